from __future__ import annotations

from typing import Protocol
from uuid import UUID

from optisweep.contexts.sweeps.domain.entities import SweepJob


class SweepJobRegistry(Protocol):
    """
    Process-wide owner of live job records.

    Related:
      - src/optisweep/contexts/sweeps/adapters/outbound/persistence/in_memory/
        sweep_job_registry.py
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
    """

    def add(self, *, job: SweepJob) -> None:
        """
        Register a freshly created job.

        Args:
            job: New pending job.
        Returns:
            None.
        Assumptions:
            Job ids are globally unique.
        Raises:
            ValueError: If the id is already registered.
        Side Effects:
            Stores the job record.
        """
        ...

    def get(self, *, job_id: UUID) -> SweepJob | None:
        ...

    def list(self) -> tuple[SweepJob, ...]:
        ...
