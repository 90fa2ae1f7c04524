from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from optisweep.contexts.sweeps.domain.entities import SweepJob, SweepJobStatus


@dataclass(frozen=True, slots=True)
class SweepJobArchiveEntry:
    """
    Lightweight archived job summary used by job listing.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_job_lookup.py
      - src/optisweep/contexts/sweeps/adapters/outbound/persistence/files/
        file_sweep_job_archive.py
    """

    job_id: UUID
    owner_key: str | None
    created_at: datetime
    status: SweepJobStatus
    result_count: int
    is_compressed: bool


class SweepJobArchive(Protocol):
    """
    Durable job history surviving process restarts.

    Related:
      - src/optisweep/contexts/sweeps/adapters/outbound/persistence/files/
        file_sweep_job_archive.py
      - src/optisweep/contexts/sweeps/application/services/sweep_job_lookup.py
    """

    def save(self, *, job: SweepJob) -> None:
        """
        Persist full job snapshot, overwriting previous snapshot.

        Args:
            job: Job to persist.
        Returns:
            None.
        Assumptions:
            Writes happen on every state change of the job.
        Raises:
            SweepStorageError: If the snapshot cannot be written.
        Side Effects:
            Writes storage.
        """
        ...

    def load(self, *, job_id: UUID) -> SweepJob | None:
        ...

    def list_entries(self) -> tuple[SweepJobArchiveEntry, ...]:
        ...

    def compress_stale(self, *, now: datetime) -> int:
        ...
