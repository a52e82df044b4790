"""Generation session lifecycle as a pure reducer.

``reduce(session, event) -> session``: no IO, no clocks. The first terminal
transition wins; every later event for that job returns the session unchanged,
which is what makes the push channel and the poller safe to race.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..api.models import ImageResult
from .events import (
    CancelRequested,
    CompletedEvent,
    ErrorEvent,
    Event,
    PollFailed,
    PollResults,
    PreviewEvent,
    ProgressEvent,
    QueuedEvent,
    StartedEvent,
    SubmitAccepted,
    TimedOut,
)

TIMEOUT_MESSAGE = "Generation timed out"


class SessionState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})
ACTIVE_STATES = frozenset({SessionState.QUEUED, SessionState.RUNNING})


@dataclass(frozen=True)
class Progress:
    label: str = ""
    percentage: float = 0.0
    value: int = 0
    max: int = 0


@dataclass(frozen=True)
class Session:
    job_id: str | None = None
    state: SessionState = SessionState.IDLE
    progress: Progress | None = None
    preview: str | None = None
    results: tuple[ImageResult, ...] = ()
    error: str | None = None
    queue_position: int | None = None
    number: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES


def reduce(session: Session, event: Event) -> Session:
    if session.is_terminal:
        return session

    if isinstance(event, SubmitAccepted):
        if session.state is not SessionState.IDLE:
            return session
        return Session(job_id=event.job_id, state=SessionState.QUEUED, number=event.number)

    if event.job_id is None or event.job_id != session.job_id:
        if isinstance(event, CancelRequested) and event.job_id is None and session.job_id is None:
            return _cancelled(session)
        return session

    if isinstance(event, CancelRequested):
        return _cancelled(session)
    if isinstance(event, TimedOut):
        return _failed(session, TIMEOUT_MESSAGE)

    if not session.is_active:
        return session

    if isinstance(event, QueuedEvent):
        if session.state is not SessionState.QUEUED:
            return session
        return replace(session, queue_position=event.queue_position)
    if isinstance(event, StartedEvent):
        return replace(session, state=SessionState.RUNNING, progress=Progress(), preview=None, error=None)
    if isinstance(event, ProgressEvent):
        # A missed "started" is implied by progress for this job.
        base = _running(session)
        return replace(
            base,
            progress=Progress(label=event.node, percentage=event.percentage, value=event.value, max=event.max),
        )
    if isinstance(event, PreviewEvent):
        base = _running(session)
        return replace(base, preview=event.image_data)
    if isinstance(event, (CompletedEvent, PollResults)):
        return replace(
            session,
            state=SessionState.COMPLETED,
            progress=None,
            preview=None,
            error=None,
            results=tuple(event.images),
        )
    if isinstance(event, (ErrorEvent, PollFailed)):
        return _failed(session, event.message)
    return session


def _running(session: Session) -> Session:
    if session.state is SessionState.RUNNING:
        return session
    return replace(session, state=SessionState.RUNNING, progress=Progress(), preview=None, error=None)


def _failed(session: Session, message: str) -> Session:
    return replace(session, state=SessionState.FAILED, progress=None, preview=None, results=(), error=message)


def _cancelled(session: Session) -> Session:
    return replace(session, state=SessionState.CANCELLED, progress=None, preview=None, results=(), error=None)
