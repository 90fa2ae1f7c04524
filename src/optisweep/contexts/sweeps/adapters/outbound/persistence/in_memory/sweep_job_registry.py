from __future__ import annotations

from uuid import UUID

from optisweep.contexts.sweeps.application.ports import SweepJobRegistry
from optisweep.contexts.sweeps.domain.entities import SweepJob
from optisweep.contexts.sweeps.domain.errors import SweepStorageError


class InMemorySweepJobRegistry(SweepJobRegistry):
    """
    InMemorySweepJobRegistry — process-local owner of live job records.

    Related:
      - src/optisweep/contexts/sweeps/application/ports/sweep_job_registry.py
      - apps/api/wiring/modules/sweeps.py
      - tests/unit/contexts/sweeps/adapters/test_in_memory_sweep_job_registry.py
    """

    def __init__(self) -> None:
        """
        Initialize empty registry storage.

        Args:
            None.
        Returns:
            None.
        Assumptions:
            Adapter lifetime is process-local; durable history belongs to the archive.
        Raises:
            None.
        Side Effects:
            Creates mutable in-memory dictionary state.
        """
        self._jobs_by_id: dict[UUID, SweepJob] = {}

    def add(self, *, job: SweepJob) -> None:
        """
        Register one new job record.

        Args:
            job: Job record.
        Returns:
            None.
        Assumptions:
            Job ids are unique per process.
        Raises:
            SweepStorageError: If job id is already registered.
        Side Effects:
            Writes job record to in-memory dictionary.
        """
        if job.job_id in self._jobs_by_id:
            raise SweepStorageError("InMemorySweepJobRegistry duplicate job_id")
        self._jobs_by_id[job.job_id] = job

    def get(self, *, job_id: UUID) -> SweepJob | None:
        return self._jobs_by_id.get(job_id)

    def list(self) -> tuple[SweepJob, ...]:
        """
        List registered jobs newest first.

        Args:
            None.
        Returns:
            tuple[SweepJob, ...]: Jobs ordered by `(created_at DESC, job_id DESC)`.
        Assumptions:
            Returned records are live objects owned by their executors.
        Raises:
            None.
        Side Effects:
            None.
        """
        return tuple(
            sorted(
                self._jobs_by_id.values(),
                key=lambda job: (job.created_at, str(job.job_id)),
                reverse=True,
            )
        )
