from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from optisweep.contexts.sweeps.application.dto import SweepProviderCredentials
from optisweep.contexts.sweeps.application.services.sweep_executor_v1 import SweepJobExecutor

log = logging.getLogger(__name__)


class AsyncioSweepJobDispatcher:
    """
    Run each dispatched job as its own asyncio task on the current event loop.

    Parameters:
    - executor: shared executor driving individual jobs.

    Assumptions/Invariants:
    - `dispatch` is called from inside a running event loop.
    - Jobs never wait on each other; no global concurrency cap is applied.
    """

    def __init__(self, *, executor: SweepJobExecutor) -> None:
        if executor is None:  # type: ignore[truthy-bool]
            raise ValueError("AsyncioSweepJobDispatcher requires executor")
        self._executor = executor
        self._tasks: dict[UUID, asyncio.Task[None]] = {}

    def dispatch(self, *, job_id: UUID, credentials: SweepProviderCredentials) -> None:
        """
        Schedule job execution without blocking the caller.

        Parameters:
        - job_id: registered pending job.
        - credentials: provider credentials handed to the executor task only.

        Returns:
        - None.

        Assumptions/Invariants:
        - One job id is dispatched at most once.

        Errors/Exceptions:
        - Raises `ValueError` when the job id was already dispatched and is still running.
        - Raises `RuntimeError` when no event loop is running.

        Side effects:
        - Creates one background task.
        """
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            raise ValueError(f"job already dispatched: {job_id}")
        task = asyncio.get_running_loop().create_task(
            self._executor.run(job_id=job_id, credentials=credentials),
            name=f"sweep-job-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda done, key=job_id: self._forget(job_id=key, task=done))
        log.info("event=job_dispatched job_id=%s", job_id)

    def running_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def wait_idle(self) -> None:
        """
        Wait until every dispatched task finished.

        Parameters:
        - None.

        Returns:
        - None.

        Assumptions/Invariants:
        - Used by tests and graceful shutdown.

        Errors/Exceptions:
        - None. Task exceptions are already logged by the executor.

        Side effects:
        - None.
        """
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Cancel in-flight job tasks and wait for them to unwind.

        Parameters:
        - None.

        Returns:
        - None.

        Assumptions/Invariants:
        - Safe to call multiple times.

        Errors/Exceptions:
        - None.

        Side effects:
        - Cancels background tasks; interrupted jobs are marked failed by the executor.
        """
        tasks = tuple(self._tasks.values())
        if not tasks:
            return
        log.info("event=dispatcher_shutdown running_jobs=%s", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, *, job_id: UUID, task: asyncio.Task[None]) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error("event=job_task_failed job_id=%s error=%s", job_id, error)
