"""
Background Job Registry.

Persistence of generated audio runs as a fire-and-forget task: the
response to the caller never waits for it, and a failed upload is never
surfaced to the caller. Tasks still need an owner though, otherwise the
event loop only keeps weak references to them and shutdown cuts uploads
off halfway. BackgroundJobs is that owner:

    - spawn() starts a task and keeps a strong reference until it ends
    - failures are logged and counted, never re-raised
    - drain() waits (bounded) for pending jobs during shutdown

Tasks are created with asyncio.create_task, which copies the current
context, so log lines from a job keep the request id of the request
that spawned it.

Usage:
    jobs = BackgroundJobs()
    jobs.spawn(f"persist:{key}", store.upload(name, branch))
    ...
    await jobs.drain(timeout=30.0)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Coroutine, Optional, Set

from tts_relay.core.logging import get_logger, info, verbose, warn
from tts_relay.core.metrics import metrics

_LOG = get_logger("tts-relay.jobs")


@dataclass
class JobStats:
    """Statistics for the background job registry."""
    pending: int
    completed: int
    failed: int
    cancelled: int


class BackgroundJobs:
    """Owns fire-and-forget tasks for the lifetime of the application."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._completed = 0
        self._failed = 0
        self._cancelled = 0

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Start a background job.

        Args:
            name: Task name, shown in logs (e.g., "persist:<key>").
            coro: Coroutine to run.

        Returns:
            The created task. Callers may ignore it.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        metrics.set_pending_jobs(len(self._tasks))
        verbose(_LOG, "job_spawned", job=name, pending=len(self._tasks))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        metrics.set_pending_jobs(len(self._tasks))

        if task.cancelled():
            self._cancelled += 1
            warn(_LOG, "job_cancelled", job=task.get_name())
            return

        exc = task.exception()
        if exc is not None:
            self._failed += 1
            warn(_LOG, "job_failed", job=task.get_name(), error=str(exc) or type(exc).__name__)
        else:
            self._completed += 1

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def stats(self) -> JobStats:
        return JobStats(
            pending=len(self._tasks),
            completed=self._completed,
            failed=self._failed,
            cancelled=self._cancelled,
        )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for pending jobs, cancelling whatever is left after timeout.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            Number of jobs that had to be cancelled.
        """
        if not self._tasks:
            return 0

        tasks = set(self._tasks)
        info(_LOG, "jobs_draining", pending=len(tasks), timeout=timeout)
        _, still_pending = await asyncio.wait(tasks, timeout=timeout)

        for task in still_pending:
            task.cancel()
        if still_pending:
            # Let cancellation run so done callbacks fire
            await asyncio.wait(still_pending)
            warn(_LOG, "jobs_drain_timeout", cancelled=len(still_pending))

        return len(still_pending)
