"""Terminal progress for a running generation session."""

from __future__ import annotations

import os
import shutil
import sys
import threading
import time
from typing import TextIO

from .session.state import Session, SessionState

_BOLD = "\x1b[1m"
_GREY = "\x1b[38;2;150;157;165m"
_RESET = "\x1b[0m"

_STATE_LABELS = {
    SessionState.IDLE: "Idle",
    SessionState.QUEUED: "Queued",
    SessionState.RUNNING: "Generating",
    SessionState.COMPLETED: "Generated",
    SessionState.FAILED: "Failed",
    SessionState.CANCELLED: "Cancelled",
}


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(0, seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def format_progress(session: Session) -> str:
    """One-line status for a session snapshot, e.g. ``Generating KSampler 42%``."""
    label = _STATE_LABELS[session.state]
    if session.state is SessionState.QUEUED and session.queue_position is not None:
        return f"{label} (position {session.queue_position})"
    if session.state is SessionState.RUNNING and session.progress is not None:
        parts = [label]
        if session.progress.label:
            parts.append(session.progress.label)
        parts.append(f"{session.progress.percentage:.0f}%")
        return " ".join(parts)
    if session.state is SessionState.FAILED and session.error:
        return f"{label}: {session.error}"
    return label


def progress_line(label: str, start: float | None = None, done: bool = False) -> tuple[str, float]:
    now = time.monotonic()
    origin = now if start is None else start
    elapsed = int(now - origin)
    suffix = "done" if done else "ctrl-c to cancel"
    return f"• {label} ({format_duration(elapsed)} • {suffix})", origin


class ProgressTicker:
    """Rewrites one status line in place on a TTY; prints transitions otherwise."""

    def __init__(
        self,
        label: str,
        start: float | None = None,
        stream: TextIO | None = None,
        interval_s: float = 1.0,
    ) -> None:
        self.label = label
        self.start = start
        self.stream = stream or sys.stdout
        self.interval_s = max(0.01, interval_s)
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._enabled = bool(getattr(self.stream, "isatty", lambda: False)())
        self._started = False

    def start_ticking(self) -> None:
        line, origin = progress_line(self.label, self.start)
        self.start = origin
        if not self._enabled:
            self._write_line(f"{_BOLD}{line}{_RESET}", newline=True)
            return
        self._write_line(f"{_BOLD}{line}{_RESET}", newline=False)
        self._started = True
        self._thread.start()

    def update(self, session: Session) -> None:
        label = format_progress(session)
        if label == self.label:
            return
        self.label = label
        if self._stop.is_set():
            return
        if not self._enabled:
            # Non-TTY output only records state changes, not every percentage.
            if session.state is not SessionState.RUNNING or session.progress is None:
                line, _ = progress_line(label, self.start)
                self._write_line(line, newline=True)
            return
        if self._started:
            line, _ = progress_line(label, self.start)
            self._write_line(f"{_BOLD}{line}{_RESET}", newline=False)

    def stop(self, session: Session | None = None) -> None:
        self._stop.set()
        if self._started:
            self._thread.join()
        state = session.state if session is not None else SessionState.COMPLETED
        elapsed = format_duration(int(time.monotonic() - (self.start or time.monotonic())))
        if state is SessionState.COMPLETED:
            summary = f"Generated in {elapsed}"
        else:
            summary = f"{format_progress(session) if session else _STATE_LABELS[state]} after {elapsed}"
        width = _resolve_terminal_width(self.stream, 100)
        self._write_line(f"{_GREY}{_separator_line(summary, width)}{_RESET}", newline=True)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            line, _ = progress_line(self.label, self.start)
            self._write_line(f"{_BOLD}{line}{_RESET}", newline=False)

    def _write_line(self, line: str, newline: bool) -> None:
        with self._lock:
            if not self._enabled:
                self.stream.write(f"{line}\n")
                self.stream.flush()
                return
            self.stream.write("\r")
            self.stream.write(line)
            self.stream.write("\033[K")
            if newline:
                self.stream.write("\n")
            self.stream.flush()


def _separator_line(label: str, width: int) -> str:
    content = f" {label} "
    if width <= len(content) + 2:
        return content.strip()
    remaining = width - len(content)
    left = remaining // 2
    right = remaining - left
    return f"{'─' * left}{content}{'─' * right}"


def _resolve_terminal_width(stream: TextIO | None, fallback: int) -> int:
    if stream and hasattr(stream, "fileno"):
        try:
            return os.get_terminal_size(stream.fileno()).columns
        except (OSError, ValueError):
            pass
    return shutil.get_terminal_size(fallback=(fallback, 20)).columns
