from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from optisweep.contexts.sweeps.application.dto import (
    EvaluationWindow,
    RetrySweepCellCommand,
    SweepProviderCredentials,
    build_sweep_owner_key,
    resolve_evaluation_window,
    result_event,
    retrying_event,
)
from optisweep.contexts.sweeps.application.ports import (
    BacktestProvider,
    SweepEventPublisher,
    SweepJobArchive,
)
from optisweep.contexts.sweeps.application.services import (
    SweepJobLookup,
    sanitize_provider_error,
    summarize_provider_report,
)
from optisweep.contexts.sweeps.domain.entities import SweepTestResult
from optisweep.contexts.sweeps.domain.errors import (
    SweepCredentialsError,
    SweepProviderError,
    SweepStorageError,
)

log = logging.getLogger(__name__)

NowProvider = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class RetrySweepCellOutcome:
    """
    Result of one out-of-band cell retry and its write-back position.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/retry_sweep_cell_v1.py
      - apps/api/routes/sweeps.py
    """

    result: SweepTestResult
    position: int
    replaced: bool

    @property
    def success(self) -> bool:
        return self.result.is_success


class RetrySweepCellUseCase:
    """
    Re-evaluate exactly one cell outside the executor fail-fast loop and write it back.

    Related:
      - src/optisweep/contexts/sweeps/domain/entities/sweep_job.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - apps/api/routes/sweeps.py
    """

    def __init__(
        self,
        *,
        lookup: SweepJobLookup,
        provider: BacktestProvider,
        publisher: SweepEventPublisher,
        archive: SweepJobArchive | None = None,
        cell_timeout_seconds: float = 20.0,
        on_retry: Callable[[str], None] | None = None,
        now_provider: NowProvider | None = None,
    ) -> None:
        """
        Initialize retry dependencies.

        Args:
            lookup: Read-through job lookup (registry, then archive).
            provider: External evaluation provider.
            publisher: Live event fan-out.
            archive: Optional durable archive for write-back.
            cell_timeout_seconds: Bounded wait for the provider call.
            on_retry: Optional counter callback with outcome literal.
            now_provider: Optional UTC clock.
        Returns:
            None.
        Assumptions:
            Callers never issue overlapping retries for the same cell.
        Raises:
            ValueError: If a dependency is missing or timeout is not positive.
        Side Effects:
            None.
        """
        if lookup is None:  # type: ignore[truthy-bool]
            raise ValueError("RetrySweepCellUseCase requires lookup")
        if provider is None:  # type: ignore[truthy-bool]
            raise ValueError("RetrySweepCellUseCase requires provider")
        if publisher is None:  # type: ignore[truthy-bool]
            raise ValueError("RetrySweepCellUseCase requires publisher")
        if cell_timeout_seconds <= 0:
            raise ValueError("cell_timeout_seconds must be > 0")
        self._lookup = lookup
        self._provider = provider
        self._publisher = publisher
        self._archive = archive
        self._cell_timeout_seconds = cell_timeout_seconds
        self._on_retry = on_retry
        self._now = now_provider or _utc_now

    async def execute(self, *, command: RetrySweepCellCommand) -> RetrySweepCellOutcome:
        """
        Retry one cell and replace or append its result in the owning job.

        Args:
            command: Retry request.
        Returns:
            RetrySweepCellOutcome: Retried result with write-back position.
        Assumptions:
            Job status never changes on retry; provider failures become failure results.
        Raises:
            SweepCredentialsError: If session or signature is missing.
            SweepJobNotFoundError: If the job is missing or owned by someone else.
        Side Effects:
            Calls provider, mutates job results, writes archive, publishes events.
        """
        credentials = command.credentials
        if credentials is None or not credentials.is_complete:
            raise SweepCredentialsError("Missing provider credentials")
        owner_key = build_sweep_owner_key(session=credentials.session)
        job = self._lookup.require_owned(job_id=command.job_id, owner_key=owner_key)
        indicator_id = command.indicator_id or job.request.indicator_id
        date_from = command.date_from if command.date_from is not None else job.request.date_from
        date_to = command.date_to if command.date_to is not None else job.request.date_to
        window = resolve_evaluation_window(date_from=date_from, date_to=date_to, now=self._now())

        self._publisher.publish(
            job_id=job.job_id,
            event=retrying_event(
                symbol=command.symbol,
                timeframe=command.timeframe,
                options=command.options,
            ),
        )
        log.info(
            "event=retry_started job_id=%s symbol=%s timeframe=%s",
            job.job_id,
            command.symbol,
            command.timeframe,
        )

        report: Mapping[str, Any] | None = None
        failure: SweepProviderError | None = None
        try:
            report = await asyncio.wait_for(
                self._evaluate(
                    credentials=credentials,
                    symbol=command.symbol,
                    timeframe=command.timeframe,
                    indicator_id=indicator_id,
                    options=command.options,
                    window=window,
                ),
                timeout=self._cell_timeout_seconds,
            )
        except asyncio.TimeoutError:
            failure = sanitize_provider_error(
                f"Timeout waiting for backtest report after {self._cell_timeout_seconds:g}s"
            )
        except Exception as error:  # noqa: BLE001
            failure = sanitize_provider_error(error)

        if failure is None:
            result = SweepTestResult.success(
                symbol=command.symbol,
                timeframe=command.timeframe,
                options=command.options,
                summary=summarize_provider_report(report),
                full_report=report,
            )
        else:
            result = SweepTestResult.failure(
                symbol=command.symbol,
                timeframe=command.timeframe,
                options=command.options,
                error=failure.message,
            )

        # Archived jobs load as independent copies; no await between this re-read and save.
        job = self._lookup.require_owned(job_id=command.job_id, owner_key=owner_key)
        position, replaced = job.upsert_result(result=result)
        if self._archive is not None:
            try:
                self._archive.save(job=job)
            except SweepStorageError:
                log.exception("event=job_archive_write_failed job_id=%s", job.job_id)
        self._publisher.publish(job_id=job.job_id, event=result_event(result=result))

        outcome = "success" if failure is None else "failure"
        if self._on_retry is not None:
            self._on_retry(outcome)
        log.info(
            "event=retry_finished job_id=%s outcome=%s position=%s replaced=%s",
            job.job_id,
            outcome,
            position,
            replaced,
        )
        return RetrySweepCellOutcome(result=result, position=position, replaced=replaced)

    async def _evaluate(
        self,
        *,
        credentials: SweepProviderCredentials,
        symbol: str,
        timeframe: str,
        indicator_id: str,
        options: Mapping[str, Any],
        window: EvaluationWindow,
    ) -> Mapping[str, Any]:
        client = await self._provider.connect(credentials=credentials)
        try:
            pair = await client.open_pair(symbol=symbol, timeframe=timeframe)
            try:
                return await pair.evaluate(
                    indicator_id=indicator_id,
                    options=options,
                    window=window,
                )
            finally:
                await pair.close()
        finally:
            await client.close()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
