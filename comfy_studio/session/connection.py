"""Event-channel connection with bounded, fixed-interval reconnects."""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets

from ..errors import TransportError
from .events import ConnectedEvent, EventParseError, WireEvent, decode_message

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def websocket_connector(url: str) -> Any:
    return await websockets.connect(url, ping_interval=20, ping_timeout=20)


class ConnectionManager:
    """Owns the single logical link to the event channel.

    Every closure (including a failed open) schedules one reconnect after
    ``reconnect_interval_s`` while ``reconnect_attempts`` is below
    ``max_reconnect_attempts``. The counter resets only when a connection
    opens, so an explicit ``connect()`` after giving up gets exactly one try.
    """

    def __init__(
        self,
        url: str,
        *,
        on_message: Callable[[WireEvent], None] | None = None,
        on_connect: Callable[[str], None] | None = None,
        on_disconnect: Callable[[], None] | None = None,
        on_error: Callable[[TransportError], None] | None = None,
        reconnect_interval_s: float = 3.0,
        max_reconnect_attempts: int = 10,
        connector: Connector | None = None,
    ) -> None:
        self.url = url
        self.on_message = on_message
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_error = on_error
        self.reconnect_interval_s = max(0.0, float(reconnect_interval_s))
        self.max_reconnect_attempts = max(0, int(max_reconnect_attempts))
        self._connector = connector or websocket_connector

        self._status = ConnectionStatus.DISCONNECTED
        self._client_id: str | None = None
        self._reconnect_attempts = 0
        self._ws: Any = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._pending_sends: set[asyncio.Task[Any]] = set()
        self._stopped = False

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connect(self) -> None:
        if self._status is not ConnectionStatus.DISCONNECTED:
            return
        self._cancel_reconnect()
        self._stopped = False
        self._status = ConnectionStatus.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run(), name="event-channel")

    def disconnect(self) -> None:
        self._stopped = True
        self._reconnect_attempts = self.max_reconnect_attempts
        self._cancel_reconnect()
        if self._ws is not None:
            self._spawn(self._ws.close())
        elif self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        self.disconnect()
        pending = [task for task in (self._task, *self._pending_sends) if task is not None and not task.done()]
        if pending:
            await asyncio.wait(pending)

    def send(self, payload: Any) -> bool:
        """Fire-and-forget; dropped unless the channel is open."""
        if self._status is not ConnectionStatus.CONNECTED or self._ws is None:
            return False
        self._spawn(self._ws.send(json.dumps(payload)))
        return True

    async def _run(self) -> None:
        try:
            ws = await self._connector(self.url)
        except asyncio.CancelledError:
            self._status = ConnectionStatus.DISCONNECTED
            raise
        except Exception as exc:
            self._report_error(exc)
            self._handle_close(reconnect=True)
            return

        self._ws = ws
        self._status = ConnectionStatus.CONNECTED
        self._reconnect_attempts = 0
        logger.info("Event channel connected: %s", self.url)

        reconnect = True
        try:
            async for raw in ws:
                self._handle_raw(raw)
        except asyncio.CancelledError:
            reconnect = False
            raise
        except Exception as exc:
            self._report_error(exc)
        finally:
            self._handle_close(reconnect=reconnect)

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            event = decode_message(raw)
        except EventParseError as exc:
            logger.warning("Discarding event-channel payload: %s", exc)
            return
        if isinstance(event, ConnectedEvent):
            self._client_id = event.client_id
            if self.on_connect:
                self.on_connect(event.client_id)
        if self.on_message:
            self.on_message(event)

    def _handle_close(self, *, reconnect: bool) -> None:
        self._ws = None
        self._status = ConnectionStatus.DISCONNECTED
        self._client_id = None
        if self.on_disconnect:
            self.on_disconnect()
        if not reconnect:
            return
        if self._reconnect_attempts < self.max_reconnect_attempts:
            self._reconnect_attempts += 1
            logger.info(
                "Event channel closed; reconnecting in %.1fs (attempt %d/%d)",
                self.reconnect_interval_s,
                self._reconnect_attempts,
                self.max_reconnect_attempts,
            )
            self._reconnect_handle = asyncio.get_running_loop().call_later(
                self.reconnect_interval_s, self._reconnect
            )
        elif not self._stopped:
            logger.warning(
                "Event channel closed; giving up after %d reconnect attempts", self._reconnect_attempts
            )

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self.connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _report_error(self, exc: BaseException) -> None:
        logger.warning("Event channel error: %s", exc)
        if self.on_error:
            error = TransportError(f"Event channel error: {exc}")
            error.__cause__ = exc
            self.on_error(error)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_sends.add(task)
        task.add_done_callback(self._on_spawned_done)

    def _on_spawned_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_sends.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Event channel write failed: %s", exc)
