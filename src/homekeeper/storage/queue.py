"""Single-writer persistence queue.

Every storage domain (preferences, schedules, analytics, tasks, equipment,
homes) owns one PersistenceQueue. Writes are appended synchronously in call
order and a single worker task applies them one at a time, so two
near-simultaneous mutations can never interleave their store I/O. A failed
write is logged and the worker moves on to the next job.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()

WriteJob = Callable[[], Awaitable[None]]


class PersistenceQueue:
    """FIFO of write jobs drained by one worker task."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: asyncio.Queue[tuple[WriteJob, asyncio.Future[bool]]] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._writes_applied = 0
        self._writes_failed = 0

    def submit(self, job: WriteJob) -> asyncio.Future[bool]:
        """Append a write job. Must be called from within the running loop.

        The returned future resolves to True when the job succeeded and False
        when it failed; it never carries an exception, so callers may drop it.
        """
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((job, future))
        self._ensure_worker()
        return future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"persistence-queue:{self.name}")

    async def _run(self) -> None:
        while True:
            job, future = await self._queue.get()
            ok = True
            try:
                await job()
                self._writes_applied += 1
            except Exception:
                ok = False
                self._writes_failed += 1
                logger.exception("queued_job_failed", queue=self.name)
            finally:
                self._queue.task_done()
            if not future.done():
                future.set_result(ok)

    async def drain(self) -> None:
        """Wait until every write submitted so far has been applied or failed."""
        await self._queue.join()

    async def close(self) -> None:
        """Drain pending writes, then stop the worker."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    @property
    def stats(self) -> dict[str, int]:
        """Return queue statistics."""
        return {
            "writes_applied": self._writes_applied,
            "writes_failed": self._writes_failed,
            "pending": self._queue.qsize(),
        }
