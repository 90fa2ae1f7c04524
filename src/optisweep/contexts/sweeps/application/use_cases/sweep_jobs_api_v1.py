from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID, uuid4

from optisweep.contexts.sweeps.application.dto import (
    SWEEP_CANCELLED_MESSAGE,
    SubmitSweepCommand,
    build_sweep_owner_key,
    error_event,
    status_event,
)
from optisweep.contexts.sweeps.application.ports import (
    SweepEventPublisher,
    SweepJobArchive,
    SweepJobDispatcher,
    SweepJobRegistry,
)
from optisweep.contexts.sweeps.application.services import (
    MAX_VALUES_PER_KEY_DEFAULT,
    SweepJobListItem,
    SweepJobLookup,
    build_sweep_combinations,
)
from optisweep.contexts.sweeps.domain.entities import SweepJob, SweepRequestSnapshot
from optisweep.contexts.sweeps.domain.errors import SweepCredentialsError, SweepStorageError

log = logging.getLogger(__name__)

NowProvider = Callable[[], datetime]
JobIdFactory = Callable[[], UUID]
MISSING_CREDENTIALS_MESSAGE = "Missing provider credentials. Sync your session and try again."


@dataclass(frozen=True, slots=True)
class SweepJobsApiHooks:
    """
    Optional callbacks for job lifecycle counters owned by the API use-cases.

    Related:
      - apps/api/wiring/modules/sweeps_metrics.py
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
    """

    on_submitted: Callable[[], None] | None = None
    on_cancelled: Callable[[], None] | None = None


class SubmitSweepJobUseCase:
    """
    Validate a submission, register a pending job and dispatch it asynchronously.

    Related:
      - src/optisweep/contexts/sweeps/application/dto/sweep_request.py
      - src/optisweep/contexts/sweeps/application/services/parameter_space_v1.py
      - apps/api/routes/sweeps.py
    """

    def __init__(
        self,
        *,
        registry: SweepJobRegistry,
        dispatcher: SweepJobDispatcher,
        archive: SweepJobArchive | None = None,
        max_values_per_key: int = MAX_VALUES_PER_KEY_DEFAULT,
        hooks: SweepJobsApiHooks | None = None,
        now_provider: NowProvider | None = None,
        job_id_factory: JobIdFactory | None = None,
    ) -> None:
        """
        Initialize submit use-case dependencies.

        Args:
            registry: Live job registry.
            dispatcher: Asynchronous job dispatcher.
            archive: Optional durable archive.
            max_values_per_key: Per-key range expansion limit.
            hooks: Optional counters.
            now_provider: Optional UTC clock.
            job_id_factory: Optional job id factory.
        Returns:
            None.
        Assumptions:
            Dispatch never blocks the caller.
        Raises:
            ValueError: If a dependency is missing or the limit is invalid.
        Side Effects:
            None.
        """
        if registry is None:  # type: ignore[truthy-bool]
            raise ValueError("SubmitSweepJobUseCase requires registry")
        if dispatcher is None:  # type: ignore[truthy-bool]
            raise ValueError("SubmitSweepJobUseCase requires dispatcher")
        if max_values_per_key <= 0:
            raise ValueError("SubmitSweepJobUseCase requires max_values_per_key > 0")
        self._registry = registry
        self._dispatcher = dispatcher
        self._archive = archive
        self._max_values_per_key = max_values_per_key
        self._hooks = hooks if hooks is not None else SweepJobsApiHooks()
        self._now = now_provider or _utc_now
        self._job_id_factory = job_id_factory or uuid4

    def execute(self, *, command: SubmitSweepCommand) -> SweepJob:
        """
        Expand combinations, create the pending job and hand it to the executor.

        Args:
            command: Validated submission.
        Returns:
            SweepJob: Registered pending job.
        Assumptions:
            Pre-expanded `combinations` are taken verbatim and never re-expanded.
        Raises:
            InvalidRangeError: If one range declaration is malformed.
            RangeTooLargeError: If one key expands beyond the per-key limit.
            SweepCredentialsError: If session or signature is missing.
        Side Effects:
            Registers job, writes archive, schedules execution task.
        """
        if command.combinations is not None:
            combinations = command.combinations
        else:
            combinations = build_sweep_combinations(
                base_options=command.base_options or {},
                ranges=command.ranges,
                max_values_per_key=self._max_values_per_key,
            )

        credentials = command.credentials
        if credentials is None or not credentials.is_complete:
            raise SweepCredentialsError(MISSING_CREDENTIALS_MESSAGE)

        request = SweepRequestSnapshot(
            indicator_id=command.indicator_id,
            symbols=command.symbols,
            timeframes=command.timeframes,
            combinations=combinations,
            date_from=command.date_from,
            date_to=command.date_to,
            ranges=(
                {key: declared.to_mapping() for key, declared in command.ranges.items()}
                if command.ranges is not None
                else None
            ),
            max_parallel_connections=command.max_parallel_connections,
            account_type=command.account_type,
        )
        job = SweepJob.create_pending(
            job_id=self._job_id_factory(),
            owner_key=build_sweep_owner_key(session=credentials.session),
            request=request,
            created_at=self._now(),
        )
        self._registry.add(job=job)
        _persist_best_effort(archive=self._archive, job=job)
        log.info(
            "event=job_submitted job_id=%s owner=%s total_cells=%s account_type=%s "
            "max_parallel_connections=%s",
            job.job_id,
            _short_owner(job.owner_key),
            job.total_cells,
            command.account_type,
            command.max_parallel_connections,
        )
        self._dispatcher.dispatch(job_id=job.job_id, credentials=credentials)
        _emit(self._hooks.on_submitted)
        return job


class CancelSweepJobUseCase:
    """
    Request cooperative cancellation of an owner job.

    Related:
      - src/optisweep/contexts/sweeps/domain/entities/sweep_job.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - apps/api/routes/sweeps.py
    """

    def __init__(
        self,
        *,
        lookup: SweepJobLookup,
        publisher: SweepEventPublisher,
        archive: SweepJobArchive | None = None,
        hooks: SweepJobsApiHooks | None = None,
        now_provider: NowProvider | None = None,
    ) -> None:
        if lookup is None:  # type: ignore[truthy-bool]
            raise ValueError("CancelSweepJobUseCase requires lookup")
        if publisher is None:  # type: ignore[truthy-bool]
            raise ValueError("CancelSweepJobUseCase requires publisher")
        self._lookup = lookup
        self._publisher = publisher
        self._archive = archive
        self._hooks = hooks if hooks is not None else SweepJobsApiHooks()
        self._now = now_provider or _utc_now

    def execute(self, *, job_id: UUID, owner_key: str | None) -> bool:
        """
        Cancel owner job when active, no-op when terminal.

        Args:
            job_id: Requested job identifier.
            owner_key: Caller owner key.
        Returns:
            bool: `True` when the job transitioned to `cancelled`.
        Assumptions:
            The executor stops at its next cell boundary.
        Raises:
            SweepJobNotFoundError: If the job is missing or owned by someone else.
        Side Effects:
            Mutates job status, writes archive, publishes `status` and `error` events.
        """
        job = self._lookup.require_owned(job_id=job_id, owner_key=owner_key)
        cancelled = job.request_cancel(now=self._now())
        if not cancelled:
            log.info("event=job_cancel_noop job_id=%s status=%s", job_id, job.status)
            return False
        _persist_best_effort(archive=self._archive, job=job)
        self._publisher.publish(
            job_id=job.job_id,
            event=status_event(
                job_id=job.job_id,
                status="cancelled",
                current=job.completed_cells,
                total=job.total_cells,
            ),
        )
        self._publisher.publish(
            job_id=job.job_id,
            event=error_event(message=SWEEP_CANCELLED_MESSAGE),
        )
        _emit(self._hooks.on_cancelled)
        log.info(
            "event=job_cancel_requested job_id=%s completed_cells=%s",
            job_id,
            job.completed_cells,
        )
        return True


class GetSweepJobUseCase:
    """
    Read one owner job from the live registry or the archive.
    """

    def __init__(self, *, lookup: SweepJobLookup) -> None:
        if lookup is None:  # type: ignore[truthy-bool]
            raise ValueError("GetSweepJobUseCase requires lookup")
        self._lookup = lookup

    def execute(self, *, job_id: UUID, owner_key: str | None) -> SweepJob:
        return self._lookup.require_owned(job_id=job_id, owner_key=owner_key)


class ListSweepJobsUseCase:
    """
    List owner jobs, newest first, across the live registry and the archive.
    """

    def __init__(self, *, lookup: SweepJobLookup) -> None:
        if lookup is None:  # type: ignore[truthy-bool]
            raise ValueError("ListSweepJobsUseCase requires lookup")
        self._lookup = lookup

    def execute(self, *, owner_key: str | None) -> tuple[SweepJobListItem, ...]:
        return self._lookup.list_owned(owner_key=owner_key)


def _persist_best_effort(*, archive: SweepJobArchive | None, job: SweepJob) -> None:
    if archive is None:
        return
    try:
        archive.save(job=job)
    except SweepStorageError:
        log.exception("event=job_archive_write_failed job_id=%s", job.job_id)


def _short_owner(owner_key: str | None) -> str:
    if owner_key is None:
        return "guest"
    return owner_key[:12]


def _emit(callback: Callable[[], None] | None) -> None:
    if callback is None:
        return
    callback()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
