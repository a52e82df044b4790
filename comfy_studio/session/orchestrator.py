"""Generation session orchestration.

One ``GenerationOrchestrator`` owns one event-channel connection, one active
``Session`` and the poller/timeout attached to it. Push events, poll results
and the timeout all land on a single asyncio queue and are applied in order by
one pump task through the pure ``reduce`` function.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from ..api.client import EngineClient
from ..api.models import GenerateRequest, HealthResponse, HistoryResponse, ImageResult, QueueStatus
from ..config import StudioConfig
from ..errors import (
    EngineError,
    GenerationTimeoutError,
    StudioError,
    SubmissionError,
    TransportError,
    UserCancellation,
    ValidationError,
)
from ..runs.events import EventWriter
from .connection import ConnectionManager, ConnectionStatus, Connector
from .dispatcher import EventDispatcher
from .events import (
    CancelRequested,
    ConnectedEvent,
    Event,
    QueueStatusEvent,
    SubmitAccepted,
    TimedOut,
    WireEvent,
)
from .poller import FallbackPoller
from .state import TIMEOUT_MESSAGE, Session, SessionState, reduce

logger = logging.getLogger(__name__)

_RETIRED_KEEP = 64


class GenerationOrchestrator:
    def __init__(
        self,
        client: EngineClient,
        *,
        ws_url: str | None = None,
        poll_interval_s: float = 1.0,
        timeout_s: float = 300.0,
        reconnect_interval_s: float = 3.0,
        max_reconnect_attempts: int = 10,
        connector: Connector | None = None,
        events: EventWriter | None = None,
    ) -> None:
        self._client = client
        self.timeout_s = float(timeout_s)
        self.events = events or EventWriter()
        self._session = Session()
        self._retired: dict[str, Session] = {}
        self._waiters: dict[str, list[asyncio.Future[Session]]] = {}
        self._subscribers: list[Callable[[Session], None]] = []
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._submit_token = 0
        self._pending_submit: int | None = None
        self.queue_status: QueueStatusEvent | None = None

        self._dispatcher = EventDispatcher(
            self._post,
            on_connection_event=self._on_connected,
            on_queue_status=self._on_queue_status,
        )
        self._poller = FallbackPoller(self._fetch_history, self._post, interval_s=poll_interval_s)
        self._connection: ConnectionManager | None = None
        if ws_url:
            self._connection = ConnectionManager(
                ws_url,
                on_message=self._on_wire_event,
                on_disconnect=self._on_disconnected,
                on_error=self._on_transport_error,
                reconnect_interval_s=reconnect_interval_s,
                max_reconnect_attempts=max_reconnect_attempts,
                connector=connector,
            )

    @classmethod
    def from_config(
        cls,
        config: StudioConfig,
        *,
        client: EngineClient | None = None,
        events: EventWriter | None = None,
        connector: Connector | None = None,
    ) -> "GenerationOrchestrator":
        return cls(
            client or EngineClient(config.api_base, timeout_s=config.request_timeout_s),
            ws_url=config.ws_url,
            poll_interval_s=config.poll_interval_s,
            timeout_s=config.generation_timeout_s,
            reconnect_interval_s=config.reconnect_interval_s,
            max_reconnect_attempts=config.max_reconnect_attempts,
            connector=connector,
            events=events,
        )

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        self._ensure_pump()
        if self._connection is not None:
            self._connection.connect()

    async def aclose(self) -> None:
        self._poller.stop()
        self._cancel_timeout()
        if self._connection is not None:
            await self._connection.aclose()
        pump = self._pump_task
        self._pump_task = None
        if pump is not None and not pump.done():
            pump.cancel()
            await asyncio.wait({pump})

    async def __aenter__(self) -> "GenerationOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        self._ensure_pump()
        await self._queue.join()

    # -- read-only views -------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def connection(self) -> ConnectionManager | None:
        return self._connection

    @property
    def connection_status(self) -> ConnectionStatus:
        if self._connection is None:
            return ConnectionStatus.DISCONNECTED
        return self._connection.status

    @property
    def client_id(self) -> str | None:
        return self._connection.client_id if self._connection is not None else None

    @property
    def poller(self) -> FallbackPoller:
        return self._poller

    def snapshot_for(self, job_id: str) -> Session | None:
        if self._session.job_id == job_id:
            return self._session
        return self._retired.get(job_id)

    def subscribe(self, callback: Callable[[Session], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def send(self, payload: Any) -> bool:
        if self._connection is None:
            return False
        return self._connection.send(payload)

    # -- operations -------------------------------------------------------

    async def submit(self, request: GenerateRequest) -> "SessionHandle":
        if not (request.prompt or "").strip():
            raise ValidationError("Please enter a prompt")
        self._ensure_pump()
        self._submit_token += 1
        token = self._submit_token
        self._replace_session(Session())
        self._pending_submit = token

        try:
            response = await asyncio.to_thread(self._client.generate, request)
        except Exception as exc:
            self.events.emit("submit_failed", error=str(exc))
            raise SubmissionError(str(exc) or "Generation failed") from exc
        finally:
            if self._pending_submit == token:
                self._pending_submit = None

        job_id = response.prompt_id
        if token != self._submit_token:
            self.events.emit("submit_replaced", job_id=job_id)
            raise SubmissionError(f"Submission of {job_id} was replaced by a later submit() call")
        if self._session.state is SessionState.CANCELLED:
            # Cancelled while the submit call was in flight.
            await self._interrupt(job_id)
            raise UserCancellation(job_id)
        self._apply(SubmitAccepted(job_id=job_id, number=response.number))
        self.events.emit("submitted", job_id=job_id, number=response.number)
        logger.info("Prompt queued: %s (#%d)", job_id, response.number)
        self._poller.start(job_id)
        self._arm_timeout(job_id)
        return SessionHandle(self, job_id)

    async def cancel(self) -> bool:
        """Cancel the current session; True when a cancellation was applied.

        While a submit call is still in flight the session is cancelled at once
        and the engine interrupt is sent when the submit returns.
        """
        session = self._session
        if session.is_terminal:
            return False
        if session.job_id is None:
            if self._pending_submit is None:
                return False
            self._apply(CancelRequested(job_id=None))
            return True
        self._apply(CancelRequested(job_id=session.job_id))
        await self._interrupt(session.job_id)
        return True

    async def _interrupt(self, job_id: str) -> None:
        try:
            await asyncio.to_thread(self._client.interrupt)
        except Exception as exc:
            logger.warning("Interrupt request for %s failed: %s", job_id, exc)
            self.events.emit("interrupt_failed", job_id=job_id, error=str(exc))

    async def wait(self, job_id: str) -> Session:
        snapshot = self.snapshot_for(job_id)
        if snapshot is None:
            raise StudioError(f"Unknown job: {job_id}")
        if snapshot.is_terminal or snapshot is not self._session:
            return snapshot
        future: asyncio.Future[Session] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, []).append(future)
        return await future

    async def health(self) -> HealthResponse:
        return await asyncio.to_thread(self._client.health)

    async def status(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._client.status)

    async def queue(self) -> QueueStatus:
        return await asyncio.to_thread(self._client.queue)

    async def clear_queue(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._client.clear)

    async def test_engine(self, url: str) -> bool:
        return await asyncio.to_thread(self._client.test_engine, url)

    # -- event plumbing ---------------------------------------------------

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.get_running_loop().create_task(self._pump(), name="session-pump")

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._apply(event)
            finally:
                self._queue.task_done()

    def _post(self, event: Event) -> None:
        self._queue.put_nowait(event)

    def _apply(self, event: Event) -> bool:
        previous = self._session
        updated = reduce(previous, event)
        if updated is previous:
            return False
        self._session = updated
        if updated.state is not previous.state:
            self.events.emit(
                "session_state",
                job_id=updated.job_id,
                state=updated.state,
                previous=previous.state,
                trigger=event.kind,
                error=updated.error,
                images=len(updated.results),
            )
        if updated.is_terminal:
            self._finish(updated)
        self._notify(updated)
        return True

    def _finish(self, session: Session) -> None:
        self._poller.stop()
        self._cancel_timeout()
        if session.job_id is None:
            return
        self._retire(session)
        self._resolve_waiters(session.job_id, session)

    def _replace_session(self, session: Session) -> None:
        previous = self._session
        self._poller.stop()
        self._cancel_timeout()
        self._session = session
        if previous.job_id is not None and not previous.is_terminal:
            self.events.emit("session_discarded", job_id=previous.job_id, state=previous.state)
            self._retire(previous)
            self._resolve_waiters(previous.job_id, previous)
        if previous is not session:
            self._notify(session)

    def _retire(self, session: Session) -> None:
        if session.job_id is None:
            return
        self._retired[session.job_id] = session
        while len(self._retired) > _RETIRED_KEEP:
            self._retired.pop(next(iter(self._retired)))

    def _resolve_waiters(self, job_id: str, session: Session) -> None:
        for future in self._waiters.pop(job_id, []):
            if not future.done():
                future.set_result(session)

    def _notify(self, session: Session) -> None:
        for callback in list(self._subscribers):
            try:
                callback(session)
            except Exception:
                logger.exception("Session subscriber failed")

    def _arm_timeout(self, job_id: str) -> None:
        self._cancel_timeout()
        self._timeout_handle = asyncio.get_running_loop().call_later(
            self.timeout_s, self._post, TimedOut(job_id=job_id)
        )

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    async def _fetch_history(self, job_id: str) -> HistoryResponse:
        return await asyncio.to_thread(self._client.history, job_id)

    def _on_wire_event(self, event: WireEvent) -> None:
        self._dispatcher.dispatch(event, self._session.job_id)

    def _on_connected(self, event: ConnectedEvent) -> None:
        self.events.emit("connected", client_id=event.client_id)

    def _on_queue_status(self, event: QueueStatusEvent) -> None:
        self.queue_status = event

    def _on_disconnected(self) -> None:
        self.events.emit("disconnected")

    def _on_transport_error(self, error: TransportError) -> None:
        self.events.emit("transport_error", error=str(error))


class SessionHandle:
    """Caller-facing view of one submitted job."""

    def __init__(self, orchestrator: GenerationOrchestrator, job_id: str) -> None:
        self._orchestrator = orchestrator
        self.job_id = job_id

    def __repr__(self) -> str:
        return f"SessionHandle(job_id={self.job_id!r})"

    @property
    def snapshot(self) -> Session | None:
        return self._orchestrator.snapshot_for(self.job_id)

    async def wait(self) -> Session:
        return await self._orchestrator.wait(self.job_id)

    async def result(self) -> tuple[ImageResult, ...]:
        session = await self.wait()
        if session.state is SessionState.COMPLETED:
            return session.results
        if session.state is SessionState.CANCELLED:
            raise UserCancellation(self.job_id)
        if session.state is SessionState.FAILED:
            if session.error == TIMEOUT_MESSAGE:
                raise GenerationTimeoutError(TIMEOUT_MESSAGE, self.job_id)
            raise EngineError(session.error or "Generation failed", self.job_id)
        raise StudioError(f"Session {self.job_id} was replaced before it finished")

    async def cancel(self) -> bool:
        if self._orchestrator.session.job_id != self.job_id:
            return False
        return await self._orchestrator.cancel()
