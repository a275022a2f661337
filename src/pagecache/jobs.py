"""Deduplicated background jobs.

Remote downloads (font stylesheets, font files, avatars) never run on the
request that discovers them. The pipeline enqueues a coroutine factory under
a dedupe key; a short-lived lock marker in the cache directory makes repeat
page views within the lock window enqueue nothing.

The marker is not released when a job finishes. A successful job leaves a
fresh cached asset, so the key is not enqueued again; a failed job is
retried once the marker expires.

The pipeline runs in a worker thread. Jobs enqueued there are handed to the
loop bound with ``bind_loop`` through ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pagecache.store import AtomicStore

log = structlog.get_logger()

Job = Callable[[], Awaitable[object]]

DEFAULT_LOCK_TTL_SECONDS = 300


class JobQueue:
    """Runs jobs as asyncio tasks on the current event loop."""

    def __init__(self, store: AtomicStore) -> None:
        self._store = store
        self._tasks: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the loop that receives jobs enqueued from worker threads."""
        self._loop = loop

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def enqueue(
        self,
        job: Job,
        *,
        dedupe_key: str,
        delay: float = 0.0,
        lock_ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
    ) -> bool:
        """Schedule ``job`` unless a live marker exists for ``dedupe_key``.

        Returns True when the job was scheduled.
        """
        try:
            loop = asyncio.get_running_loop()
            threaded = False
        except RuntimeError:
            loop = self._loop
            threaded = True
        if loop is None or loop.is_closed():
            log.warning("job_skipped", dedupe_key=dedupe_key, reason="no_running_loop")
            return False

        if not self._store.try_lock(dedupe_key, lock_ttl_seconds):
            log.debug("job_deduplicated", dedupe_key=dedupe_key)
            return False

        if threaded:
            loop.call_soon_threadsafe(self._spawn, loop, job, dedupe_key, delay)
        else:
            self._spawn(loop, job, dedupe_key, delay)
        log.debug("job_enqueued", dedupe_key=dedupe_key, delay=delay)
        return True

    def _spawn(self, loop: asyncio.AbstractEventLoop, job: Job, dedupe_key: str, delay: float) -> None:
        task = loop.create_task(self._run(job, dedupe_key, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job: Job, dedupe_key: str, delay: float) -> None:
        """Fire-and-forget wrapper: all exceptions are caught and logged."""
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await job()
            log.info("job_complete", dedupe_key=dedupe_key)
        except Exception:
            log.warning("job_failed", dedupe_key=dedupe_key, exc_info=True)

    async def join(self) -> None:
        """Wait until every scheduled job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding jobs. Called at shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
