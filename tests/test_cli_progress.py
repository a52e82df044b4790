from __future__ import annotations

import time

from comfy_studio.cli_progress import ProgressTicker, format_duration, format_progress
from comfy_studio.session.state import Progress, Session, SessionState


class FakeStream:
    def __init__(self, is_tty: bool) -> None:
        self._isatty = is_tty
        self.buffer: list[str] = []

    def isatty(self) -> bool:  # pragma: no cover - signature mimic
        return self._isatty

    def write(self, data: str) -> None:
        self.buffer.append(data)

    def flush(self) -> None:  # pragma: no cover - no-op for tests
        return None

    @property
    def text(self) -> str:
        return "".join(self.buffer)


def _running(percentage: float) -> Session:
    return Session(
        job_id="job",
        state=SessionState.RUNNING,
        progress=Progress(label="KSampler", percentage=percentage, value=1, max=2),
    )


def test_format_progress() -> None:
    assert format_progress(Session()) == "Idle"
    assert format_progress(Session(job_id="j", state=SessionState.QUEUED, queue_position=3)) == "Queued (position 3)"
    assert format_progress(_running(42.4)) == "Generating KSampler 42%"
    assert format_progress(Session(job_id="j", state=SessionState.FAILED, error="boom")) == "Failed: boom"


def test_format_duration() -> None:
    assert format_duration(5) == "5s"
    assert format_duration(65) == "1m 05s"
    assert format_duration(3725) == "1h 2m 05s"


def test_ticker_non_tty_prints_transitions_only() -> None:
    stream = FakeStream(is_tty=False)
    ticker = ProgressTicker("Submitting", stream=stream, interval_s=0.01)
    ticker.start_ticking()
    ticker.update(Session(job_id="job", state=SessionState.QUEUED))
    ticker.update(_running(10.0))
    ticker.update(_running(20.0))
    done = Session(job_id="job", state=SessionState.COMPLETED)
    ticker.stop(done)
    output = stream.text
    lines = [line for line in output.splitlines() if line.strip()]
    assert len(lines) == 3
    assert "Submitting" in lines[0]
    assert "Queued" in lines[1]
    assert "Generated in" in lines[2]
    assert "\r" not in output


def test_ticker_tty_updates_in_place() -> None:
    stream = FakeStream(is_tty=True)
    ticker = ProgressTicker("Submitting", stream=stream, interval_s=0.01)
    ticker.start_ticking()
    ticker.update(_running(50.0))
    time.sleep(0.03)
    ticker.stop(Session(job_id="job", state=SessionState.CANCELLED))
    output = stream.text
    assert "\r" in output
    assert "\x1b[K" in output
    assert "Generating KSampler 50%" in output
    assert output.count("Cancelled after") == 1
