"""Route parsed event-channel messages to their consumers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from .events import ConnectedEvent, QueueStatusEvent, WireEvent

logger = logging.getLogger(__name__)


class Route(str, Enum):
    SESSION = "session"
    CONNECTION = "connection"
    QUEUE = "queue"
    DROPPED = "dropped"


def classify(event: WireEvent, active_job_id: str | None) -> Route:
    if isinstance(event, ConnectedEvent):
        return Route.CONNECTION
    if isinstance(event, QueueStatusEvent):
        return Route.QUEUE
    if active_job_id is None or event.job_id is None:
        return Route.DROPPED
    if event.job_id != active_job_id:
        return Route.DROPPED
    return Route.SESSION


class EventDispatcher:
    def __init__(
        self,
        on_session_event: Callable[[WireEvent], None],
        *,
        on_connection_event: Callable[[ConnectedEvent], None] | None = None,
        on_queue_status: Callable[[QueueStatusEvent], None] | None = None,
    ) -> None:
        self._on_session_event = on_session_event
        self._on_connection_event = on_connection_event
        self._on_queue_status = on_queue_status

    def dispatch(self, event: WireEvent, active_job_id: str | None) -> Route:
        route = classify(event, active_job_id)
        if route is Route.SESSION:
            self._on_session_event(event)
        elif route is Route.CONNECTION:
            if self._on_connection_event and isinstance(event, ConnectedEvent):
                self._on_connection_event(event)
        elif route is Route.QUEUE:
            if self._on_queue_status and isinstance(event, QueueStatusEvent):
                self._on_queue_status(event)
        else:
            logger.debug("Dropped %s event for job %s (active job %s)", event.kind, event.job_id, active_job_id)
        return route
