from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from uuid import UUID

from optisweep.contexts.sweeps.application.dto import (
    EvaluationWindow,
    SweepProviderCredentials,
    cell_state_event,
    complete_event,
    error_event,
    progress_event,
    rate_limit_event,
    resolve_evaluation_window,
    result_event,
    saved_event,
    status_event,
)
from optisweep.contexts.sweeps.application.ports import (
    BacktestProvider,
    BacktestProviderPairSession,
    SweepEventPublisher,
    SweepJobArchive,
    SweepJobRegistry,
)
from optisweep.contexts.sweeps.application.services.provider_outcome_v1 import (
    sanitize_provider_error,
    summarize_provider_report,
)
from optisweep.contexts.sweeps.domain.entities import SweepJob, SweepScalar, SweepTestResult
from optisweep.contexts.sweeps.domain.errors import SweepProviderError, SweepStorageError

log = logging.getLogger(__name__)

NowProvider = Callable[[], datetime]
SHUTDOWN_INTERRUPTED_MESSAGE = "Backtest interrupted by server shutdown"


@dataclass(frozen=True, slots=True)
class SweepExecutorHooks:
    """
    Optional callbacks for executor metrics.

    Parameters:
    - on_job_started: callback invoked when a job enters `running`.
    - on_job_finished: callback with terminal status literal.
    - on_cell_evaluated: callback with `(outcome, duration_seconds)` per attempted cell.
    - on_rate_limited: callback invoked when a failure is recognized as rate-limit flavoured.

    Assumptions/Invariants:
    - Callbacks are lightweight and non-blocking.
    """

    on_job_started: Callable[[], None] | None = None
    on_job_finished: Callable[[str], None] | None = None
    on_cell_evaluated: Callable[[str, float], None] | None = None
    on_rate_limited: Callable[[], None] | None = None


class SweepJobExecutor:
    """
    Drive one job from `pending` to a terminal status, one cell at a time, fail-fast.

    Cells run in `symbols x timeframes x combinations` order. Cancellation is observed only
    at cell boundaries; an in-flight provider call always finishes or times out first.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_job_dispatcher.py
      - src/optisweep/contexts/sweeps/application/services/broadcast_hub.py
      - src/optisweep/contexts/sweeps/application/ports/backtest_provider.py
    """

    def __init__(
        self,
        *,
        registry: SweepJobRegistry,
        provider: BacktestProvider,
        publisher: SweepEventPublisher,
        archive: SweepJobArchive | None = None,
        cell_timeout_seconds: float = 20.0,
        dispatch_delay_seconds: float = 0.5,
        announce_pending_cells: bool = True,
        hooks: SweepExecutorHooks | None = None,
        now_provider: NowProvider | None = None,
    ) -> None:
        """
        Initialize executor dependencies and timing policy.

        Args:
            registry: Live job registry.
            provider: External evaluation provider.
            publisher: Live event fan-out.
            archive: Optional durable job archive written on every state change.
            cell_timeout_seconds: Bounded wait for one provider call (and session setup).
            dispatch_delay_seconds: Grace delay before the `running` transition.
            announce_pending_cells: Whether to publish one `pending` event per planned cell.
            hooks: Optional metrics callbacks.
            now_provider: UTC clock.
        Returns:
            None.
        Assumptions:
            One executor instance may drive many jobs concurrently; per-job state lives on
            the job record.
        Raises:
            ValueError: If a dependency is missing or timing values are invalid.
        Side Effects:
            None.
        """
        if registry is None:  # type: ignore[truthy-bool]
            raise ValueError("SweepJobExecutor requires registry")
        if provider is None:  # type: ignore[truthy-bool]
            raise ValueError("SweepJobExecutor requires provider")
        if publisher is None:  # type: ignore[truthy-bool]
            raise ValueError("SweepJobExecutor requires publisher")
        if cell_timeout_seconds <= 0:
            raise ValueError("cell_timeout_seconds must be > 0")
        if dispatch_delay_seconds < 0:
            raise ValueError("dispatch_delay_seconds must be >= 0")

        self._registry = registry
        self._provider = provider
        self._publisher = publisher
        self._archive = archive
        self._cell_timeout_seconds = cell_timeout_seconds
        self._dispatch_delay_seconds = dispatch_delay_seconds
        self._announce_pending_cells = announce_pending_cells
        self._hooks = hooks if hooks is not None else SweepExecutorHooks()
        self._now = now_provider or _utc_now

    async def run(self, *, job_id: UUID, credentials: SweepProviderCredentials) -> None:
        """
        Execute one registered job to completion.

        Args:
            job_id: Registered job id.
            credentials: Provider credentials, kept only for the lifetime of this call.
        Returns:
            None.
        Assumptions:
            Exactly one task runs `run` for a given job.
        Raises:
            asyncio.CancelledError: Propagated after the job is marked failed on shutdown.
        Side Effects:
            Mutates the job record, publishes events, writes the archive, calls provider.
        """
        job = self._registry.get(job_id=job_id)
        if job is None:
            log.warning("event=job_dispatch_missing job_id=%s", job_id)
            return
        if self._dispatch_delay_seconds > 0:
            await asyncio.sleep(self._dispatch_delay_seconds)
        if job.status == "cancelled":
            self._finish_cancelled(job=job)
            return
        if job.status != "pending":
            log.info("event=job_dispatch_skipped job_id=%s status=%s", job_id, job.status)
            return

        self._start(job=job)
        try:
            await self._execute(job=job, credentials=credentials)
        except asyncio.CancelledError:
            if not job.is_terminal:
                log.warning("event=job_interrupted job_id=%s", job.job_id)
                job.mark_failed(now=self._now(), error=SHUTDOWN_INTERRUPTED_MESSAGE)
                self._persist(job=job)
                _emit_finished(self._hooks.on_job_finished, "failed")
            raise
        except Exception as error:  # noqa: BLE001
            log.exception("event=job_crashed job_id=%s", job.job_id)
            self._fail(job=job, failure=sanitize_provider_error(error))

    def _start(self, *, job: SweepJob) -> None:
        job.mark_running(now=self._now())
        self._persist(job=job)
        self._publisher.publish(
            job_id=job.job_id,
            event=status_event(
                job_id=job.job_id,
                status="running",
                current=0,
                total=job.total_cells,
            ),
        )
        _emit(self._hooks.on_job_started)
        log.info(
            "event=job_started job_id=%s total_cells=%s symbols=%s timeframes=%s "
            "combinations=%s",
            job.job_id,
            job.total_cells,
            len(job.request.symbols),
            len(job.request.timeframes),
            len(job.request.combinations),
        )
        if not self._announce_pending_cells:
            return
        for symbol in job.request.symbols:
            for timeframe in job.request.timeframes:
                for options in job.request.combinations:
                    self._publisher.publish(
                        job_id=job.job_id,
                        event=cell_state_event(
                            kind="pending",
                            symbol=symbol,
                            timeframe=timeframe,
                            options=options,
                        ),
                    )

    async def _execute(self, *, job: SweepJob, credentials: SweepProviderCredentials) -> None:
        """
        Run the nested cell loop with provider resources scoped per job and per pair.

        Args:
            job: Running job.
            credentials: Provider credentials.
        Returns:
            None.
        Assumptions:
            Provider session setup failures are job-level failures without a cell result.
        Raises:
            SweepDomainError: If the job record rejects a transition.
        Side Effects:
            Opens and releases provider sessions.
        """
        window = resolve_evaluation_window(
            date_from=job.request.date_from,
            date_to=job.request.date_to,
            now=self._now(),
        )
        try:
            client = await asyncio.wait_for(
                self._provider.connect(credentials=credentials),
                timeout=self._cell_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._fail(job=job, failure=self._timeout_failure(stage="provider connection"))
            return
        except Exception as error:  # noqa: BLE001
            self._fail(job=job, failure=sanitize_provider_error(error))
            return

        try:
            for symbol in job.request.symbols:
                for timeframe in job.request.timeframes:
                    if job.cancel_requested:
                        self._finish_cancelled(job=job)
                        return
                    try:
                        pair = await asyncio.wait_for(
                            client.open_pair(symbol=symbol, timeframe=timeframe),
                            timeout=self._cell_timeout_seconds,
                        )
                    except asyncio.TimeoutError:
                        failure = self._timeout_failure(stage="pair session")
                        self._fail(job=job, failure=failure)
                        return
                    except Exception as error:  # noqa: BLE001
                        self._fail(job=job, failure=sanitize_provider_error(error))
                        return
                    try:
                        for options in job.request.combinations:
                            if job.cancel_requested:
                                self._finish_cancelled(job=job)
                                return
                            failed = await self._run_cell(
                                job=job,
                                pair=pair,
                                symbol=symbol,
                                timeframe=timeframe,
                                options=options,
                                window=window,
                            )
                            if failed:
                                return
                    finally:
                        await _release(resource=pair, job_id=job.job_id, name="pair")
            if job.cancel_requested:
                self._finish_cancelled(job=job)
                return
            self._complete(job=job)
        finally:
            await _release(resource=client, job_id=job.job_id, name="client")

    async def _run_cell(
        self,
        *,
        job: SweepJob,
        pair: BacktestProviderPairSession,
        symbol: str,
        timeframe: str,
        options: Mapping[str, SweepScalar],
        window: EvaluationWindow,
    ) -> bool:
        """
        Evaluate one cell, record and publish its outcome.

        Args:
            job: Running job.
            pair: Open pair session.
            symbol: Cell symbol.
            timeframe: Cell timeframe.
            options: Cell combination.
            window: Evaluation window.
        Returns:
            bool: `True` when the cell failed and the job must stop.
        Assumptions:
            A timeout is treated exactly like any other provider failure.
        Raises:
            SweepDomainError: If the job record rejects the result write.
        Side Effects:
            Calls provider, mutates job results, publishes events.
        """
        self._publisher.publish(
            job_id=job.job_id,
            event=cell_state_event(
                kind="running",
                symbol=symbol,
                timeframe=timeframe,
                options=options,
            ),
        )
        log.debug(
            "event=cell_started job_id=%s symbol=%s timeframe=%s options=%s",
            job.job_id,
            symbol,
            timeframe,
            dict(options),
        )
        loop = asyncio.get_running_loop()
        started = loop.time()
        report: Mapping[str, Any] | None = None
        failure: SweepProviderError | None = None
        try:
            report = await asyncio.wait_for(
                pair.evaluate(
                    indicator_id=job.request.indicator_id,
                    options=options,
                    window=window,
                ),
                timeout=self._cell_timeout_seconds,
            )
        except asyncio.TimeoutError:
            failure = self._timeout_failure(stage="backtest report")
        except Exception as error:  # noqa: BLE001
            failure = sanitize_provider_error(error)
        duration_seconds = max(loop.time() - started, 0.0)

        if failure is None:
            result = SweepTestResult.success(
                symbol=symbol,
                timeframe=timeframe,
                options=options,
                summary=summarize_provider_report(report),
                full_report=report,
            )
        else:
            result = SweepTestResult.failure(
                symbol=symbol,
                timeframe=timeframe,
                options=options,
                error=failure.message,
            )
        job.record_result(result=result)
        current = job.advance_progress()
        self._publisher.publish(job_id=job.job_id, event=result_event(result=result))
        self._publisher.publish(
            job_id=job.job_id,
            event=progress_event(current=current, total=job.total_cells),
        )
        _emit_cell(
            self._hooks.on_cell_evaluated,
            "success" if failure is None else "failure",
            duration_seconds,
        )

        if failure is None:
            log.debug(
                "event=cell_finished job_id=%s symbol=%s timeframe=%s duration_seconds=%.3f",
                job.job_id,
                symbol,
                timeframe,
                duration_seconds,
            )
            return False

        log.warning(
            "event=cell_failed job_id=%s symbol=%s timeframe=%s rate_limited=%s error=%s",
            job.job_id,
            symbol,
            timeframe,
            failure.rate_limited,
            failure.message,
        )
        if failure.rate_limited:
            _emit(self._hooks.on_rate_limited)
            self._publisher.publish(
                job_id=job.job_id,
                event=rate_limit_event(message=failure.message),
            )
        self._fail(job=job, failure=failure)
        return True

    def _timeout_failure(self, *, stage: str) -> SweepProviderError:
        return sanitize_provider_error(
            f"Timeout waiting for {stage} after {self._cell_timeout_seconds:g}s"
        )

    def _complete(self, *, job: SweepJob) -> None:
        job.mark_completed(now=self._now())
        self._persist(job=job)
        self._publisher.publish(
            job_id=job.job_id,
            event=status_event(
                job_id=job.job_id,
                status="completed",
                current=job.completed_cells,
                total=job.total_cells,
            ),
        )
        self._publisher.publish(
            job_id=job.job_id,
            event=complete_event(job_id=job.job_id, result_count=len(job.results)),
        )
        _emit_finished(self._hooks.on_job_finished, "completed")
        log.info("event=job_completed job_id=%s results=%s", job.job_id, len(job.results))

    def _fail(self, *, job: SweepJob, failure: SweepProviderError) -> None:
        """
        Apply fail-fast terminal failure unless the job already reached a terminal status.

        Args:
            job: Job being executed.
            failure: Sanitized provider failure.
        Returns:
            None.
        Assumptions:
            A failure observed after cancellation keeps status `cancelled`.
        Raises:
            None.
        Side Effects:
            Mutates job, writes archive, publishes `status` and `error` events.
        """
        if job.is_terminal:
            self._finish_cancelled(job=job)
            return
        job.mark_failed(now=self._now(), error=failure.message)
        self._persist(job=job)
        self._publisher.publish(
            job_id=job.job_id,
            event=status_event(
                job_id=job.job_id,
                status="failed",
                current=job.completed_cells,
                total=job.total_cells,
            ),
        )
        self._publisher.publish(job_id=job.job_id, event=error_event(message=failure.message))
        _emit_finished(self._hooks.on_job_finished, "failed")
        log.info(
            "event=job_failed job_id=%s attempted_cells=%s error=%s",
            job.job_id,
            len(job.results),
            failure.message,
        )

    def _finish_cancelled(self, *, job: SweepJob) -> None:
        self._persist(job=job)
        _emit_finished(self._hooks.on_job_finished, "cancelled")
        log.info(
            "event=job_cancelled job_id=%s attempted_cells=%s total_cells=%s",
            job.job_id,
            len(job.results),
            job.total_cells,
        )

    def _persist(self, *, job: SweepJob) -> None:
        """
        Write job snapshot to the archive, best-effort.

        Args:
            job: Job to persist.
        Returns:
            None.
        Assumptions:
            Archive failures never change job execution.
        Raises:
            None.
        Side Effects:
            Writes archive and publishes `saved` for terminal jobs.
        """
        if self._archive is None:
            return
        try:
            self._archive.save(job=job)
        except SweepStorageError:
            log.exception("event=job_archive_write_failed job_id=%s", job.job_id)
            return
        if job.is_terminal:
            self._publisher.publish(job_id=job.job_id, event=saved_event(job_id=job.job_id))


async def _release(*, resource: Any, job_id: UUID, name: str) -> None:
    try:
        await resource.close()
    except Exception:  # noqa: BLE001
        log.warning("event=provider_release_failed job_id=%s resource=%s", job_id, name)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _emit(callback: Callable[[], None] | None) -> None:
    if callback is None:
        return
    callback()


def _emit_finished(callback: Callable[[str], None] | None, status: str) -> None:
    if callback is None:
        return
    callback(status)


def _emit_cell(
    callback: Callable[[str, float], None] | None,
    outcome: str,
    duration_seconds: float,
) -> None:
    if callback is None:
        return
    callback(outcome, duration_seconds)
