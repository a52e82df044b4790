"""Session events: event-channel messages plus locally produced lifecycle signals."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Union

from ..api.models import ImageResult, parse_images


class EventParseError(ValueError):
    """Inbound payload is not a recognised event."""


@dataclass(frozen=True)
class ConnectedEvent:
    kind: ClassVar[str] = "connected"
    client_id: str
    job_id: None = None


@dataclass(frozen=True)
class QueueStatusEvent:
    kind: ClassVar[str] = "queue_status"
    running: int
    pending: int
    job_id: None = None


@dataclass(frozen=True)
class QueuedEvent:
    kind: ClassVar[str] = "queued"
    job_id: str
    queue_position: int = 0


@dataclass(frozen=True)
class StartedEvent:
    kind: ClassVar[str] = "started"
    job_id: str


@dataclass(frozen=True)
class ProgressEvent:
    kind: ClassVar[str] = "progress"
    job_id: str
    node: str
    value: int
    max: int
    percentage: float


@dataclass(frozen=True)
class PreviewEvent:
    kind: ClassVar[str] = "preview"
    job_id: str
    image_data: str


@dataclass(frozen=True)
class CompletedEvent:
    kind: ClassVar[str] = "completed"
    job_id: str
    images: tuple[ImageResult, ...] = ()


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[str] = "error"
    job_id: str | None
    message: str


# Produced locally, never received over the wire.


@dataclass(frozen=True)
class SubmitAccepted:
    kind: ClassVar[str] = "submit_accepted"
    job_id: str
    number: int = 0


@dataclass(frozen=True)
class PollResults:
    kind: ClassVar[str] = "poll_results"
    job_id: str
    images: tuple[ImageResult, ...]


@dataclass(frozen=True)
class PollFailed:
    kind: ClassVar[str] = "poll_failed"
    job_id: str
    message: str


@dataclass(frozen=True)
class CancelRequested:
    kind: ClassVar[str] = "cancel"
    job_id: str | None


@dataclass(frozen=True)
class TimedOut:
    kind: ClassVar[str] = "timeout"
    job_id: str


WireEvent = Union[
    ConnectedEvent,
    QueueStatusEvent,
    QueuedEvent,
    StartedEvent,
    ProgressEvent,
    PreviewEvent,
    CompletedEvent,
    ErrorEvent,
]
Event = Union[WireEvent, SubmitAccepted, PollResults, PollFailed, CancelRequested, TimedOut]


def decode_message(raw: str | bytes) -> WireEvent:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EventParseError("Binary frame is not UTF-8 text") from exc
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise EventParseError(f"Invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise EventParseError("Event payload must be a JSON object")
    return parse_event(payload)


def parse_event(payload: Mapping[str, Any]) -> WireEvent:
    event_type = payload.get("type")
    try:
        if event_type == "connected":
            return ConnectedEvent(client_id=_required_str(payload, "client_id"))
        if event_type == "queue_status":
            return QueueStatusEvent(running=int(payload.get("running") or 0), pending=int(payload.get("pending") or 0))
        if event_type == "queued":
            return QueuedEvent(
                job_id=_required_str(payload, "prompt_id"),
                queue_position=int(payload.get("queue_position") or 0),
            )
        if event_type == "started":
            return StartedEvent(job_id=_required_str(payload, "prompt_id"))
        if event_type == "progress":
            value = int(payload.get("value") or 0)
            maximum = int(payload.get("max") or 0)
            percentage = payload.get("percentage")
            if percentage is None:
                percentage = (value / maximum * 100.0) if maximum else 0.0
            return ProgressEvent(
                job_id=_required_str(payload, "prompt_id"),
                node=str(payload.get("node") or ""),
                value=value,
                max=maximum,
                percentage=float(percentage),
            )
        if event_type == "preview":
            return PreviewEvent(job_id=_required_str(payload, "prompt_id"), image_data=_required_str(payload, "image_data"))
        if event_type == "completed":
            return CompletedEvent(job_id=_required_str(payload, "prompt_id"), images=parse_images(payload.get("images")))
        if event_type == "error":
            job_id = payload.get("prompt_id")
            return ErrorEvent(
                job_id=job_id if isinstance(job_id, str) and job_id else None,
                message=str(payload.get("message") or "Unknown error"),
            )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, EventParseError):
            raise
        raise EventParseError(f"Malformed {event_type!r} event: {exc}") from exc
    raise EventParseError(f"Unknown event type: {event_type!r}")


def _required_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise EventParseError(f"Missing {key!r}")
    return value
