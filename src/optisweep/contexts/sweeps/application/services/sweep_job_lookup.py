from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from optisweep.contexts.sweeps.application.ports import SweepJobArchive, SweepJobRegistry
from optisweep.contexts.sweeps.domain.entities import SweepJob, SweepJobStatus
from optisweep.contexts.sweeps.domain.errors import SweepJobNotFoundError, SweepStorageError

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepJobListItem:
    """
    One row of the owner-filtered job history listing.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
      - apps/api/dto/sweeps.py
    """

    job_id: UUID
    created_at: datetime
    status: SweepJobStatus
    result_count: int
    is_archived: bool


class SweepJobLookup:
    """
    Read-through job access: live registry first, then the durable archive.

    Related:
      - src/optisweep/contexts/sweeps/application/ports/sweep_job_registry.py
      - src/optisweep/contexts/sweeps/application/ports/sweep_job_archive.py
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_results_export_v1.py
    """

    def __init__(
        self,
        *,
        registry: SweepJobRegistry,
        archive: SweepJobArchive | None = None,
    ) -> None:
        if registry is None:  # type: ignore[truthy-bool]
            raise ValueError("SweepJobLookup requires registry")
        self._registry = registry
        self._archive = archive

    def find(self, *, job_id: UUID) -> SweepJob | None:
        """
        Find one job by id regardless of owner.

        Args:
            job_id: Job identifier.
        Returns:
            SweepJob | None: Live job, archived job, or `None`.
        Assumptions:
            Live record wins over an archived snapshot of the same job.
        Raises:
            SweepStorageError: If the archived snapshot is unreadable.
        Side Effects:
            Reads archive storage.
        """
        job = self._registry.get(job_id=job_id)
        if job is not None:
            return job
        if self._archive is None:
            return None
        return self._archive.load(job_id=job_id)

    def find_live(self, job_id: UUID) -> SweepJob | None:
        return self._registry.get(job_id=job_id)

    def require_owned(self, *, job_id: UUID, owner_key: str | None) -> SweepJob:
        """
        Load one job visible to the given owner.

        Args:
            job_id: Job identifier.
            owner_key: Caller owner key (`None` for guests).
        Returns:
            SweepJob: Visible job.
        Assumptions:
            Foreign-owner jobs are reported exactly like missing jobs.
        Raises:
            SweepJobNotFoundError: If job is missing or owned by someone else.
            SweepStorageError: If the archived snapshot is unreadable.
        Side Effects:
            Reads archive storage.
        """
        job = self.find(job_id=job_id)
        if job is None or job.owner_key != owner_key:
            raise SweepJobNotFoundError(job_id=job_id)
        return job

    def list_owned(self, *, owner_key: str | None) -> tuple[SweepJobListItem, ...]:
        """
        List live and archived jobs visible to one owner, newest first.

        Args:
            owner_key: Caller owner key (`None` for guests).
        Returns:
            tuple[SweepJobListItem, ...]: Deduplicated rows ordered by `created_at DESC`.
        Assumptions:
            Unreadable archive directory degrades to live jobs only.
        Raises:
            None.
        Side Effects:
            Reads archive storage.
        """
        items: dict[UUID, SweepJobListItem] = {}
        for job in self._registry.list():
            if job.owner_key != owner_key:
                continue
            items[job.job_id] = SweepJobListItem(
                job_id=job.job_id,
                created_at=job.created_at,
                status=job.status,
                result_count=len(job.results),
                is_archived=False,
            )
        if self._archive is not None:
            try:
                entries = self._archive.list_entries()
            except SweepStorageError:
                log.exception("event=job_archive_list_failed")
                entries = ()
            for entry in entries:
                if entry.owner_key != owner_key or entry.job_id in items:
                    continue
                items[entry.job_id] = SweepJobListItem(
                    job_id=entry.job_id,
                    created_at=entry.created_at,
                    status=entry.status,
                    result_count=entry.result_count,
                    is_archived=True,
                )
        return tuple(
            sorted(
                items.values(),
                key=lambda item: (item.created_at, str(item.job_id)),
                reverse=True,
            )
        )
