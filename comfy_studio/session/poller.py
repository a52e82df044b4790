"""Pull-based fallback for completions the event channel failed to deliver."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..api.models import HistoryResponse
from .events import Event, PollFailed, PollResults

logger = logging.getLogger(__name__)

HistoryFetcher = Callable[[str], Awaitable[HistoryResponse]]


class FallbackPoller:
    """Ask for a job's history every ``interval_s`` until it resolves or is stopped.

    Fetch failures count as "still pending". Only a non-empty image list or an
    explicit ``error`` status produce an event; either one ends polling.
    """

    def __init__(self, fetch_history: HistoryFetcher, emit: Callable[[Event], None], *, interval_s: float = 1.0) -> None:
        self._fetch_history = fetch_history
        self._emit = emit
        self.interval_s = max(0.0, float(interval_s))
        self._task: asyncio.Task[None] | None = None
        self._job_id: str | None = None
        self.requests = 0

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, job_id: str) -> None:
        self.stop()
        self._job_id = job_id
        self._task = asyncio.get_running_loop().create_task(self._run(job_id), name=f"poll-{job_id}")

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.requests += 1
            try:
                history = await self._fetch_history(job_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("History for %s not available yet: %s", job_id, exc)
                continue
            if history.images:
                self._emit(PollResults(job_id=job_id, images=tuple(history.images)))
                return
            if history.failed:
                self._emit(PollFailed(job_id=job_id, message=f"Generation failed (status: {history.status})"))
                return
