from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from optisweep.contexts.sweeps.application.services import (
    SweepBroadcastHubHooks,
    SweepExecutorHooks,
)
from optisweep.contexts.sweeps.application.use_cases import SweepJobsApiHooks


class SweepMetrics:
    """
    Prometheus metrics bundle for sweep submission, execution, retry and live fan-out.

    Related:
      - apps/api/wiring/modules/sweeps.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - src/optisweep/contexts/sweeps/application/services/broadcast_hub.py
    """

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        """
        Register sweep metrics in provided or default Prometheus registry.

        Args:
            registry: Optional registry for tests or per-app setups.
        Returns:
            None.
        Assumptions:
            Metric names are stable for dashboards.
        Raises:
            ValueError: Propagated by Prometheus client on duplicate metric names.
        Side Effects:
            Registers metrics in target registry.
        """
        self.registry = registry or REGISTRY
        self.jobs_submitted_total = Counter(
            "sweep_jobs_submitted_total",
            "Sweep jobs accepted by submit endpoint",
            registry=self.registry,
        )
        self.cancel_requests_total = Counter(
            "sweep_jobs_cancel_requests_total",
            "Cancel requests that moved an active job to cancelled",
            registry=self.registry,
        )
        self.jobs_finished_total = Counter(
            "sweep_jobs_finished_total",
            "Sweep jobs finished by executor per terminal status",
            labelnames=("status",),
            registry=self.registry,
        )
        self.cells_evaluated_total = Counter(
            "sweep_cells_evaluated_total",
            "Sweep cells evaluated per outcome",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self.rate_limited_total = Counter(
            "sweep_provider_rate_limited_total",
            "Provider failures recognized as rate limiting",
            registry=self.registry,
        )
        self.retries_total = Counter(
            "sweep_cell_retries_total",
            "Single-cell retries per outcome",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self.hub_frames_dropped_total = Counter(
            "sweep_hub_frames_dropped_total",
            "Live frames dropped because an observer outbox was full",
            registry=self.registry,
        )
        self.cell_duration_seconds = Histogram(
            "sweep_cell_duration_seconds",
            "Provider evaluation duration per cell in seconds",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0),
            registry=self.registry,
        )
        self.running_jobs = Gauge(
            "sweep_running_jobs",
            "Sweep jobs currently in running status",
            registry=self.registry,
        )

    def executor_hooks(self) -> SweepExecutorHooks:
        return SweepExecutorHooks(
            on_job_started=self.running_jobs.inc,
            on_job_finished=self._observe_job_finished,
            on_cell_evaluated=self._observe_cell,
            on_rate_limited=self.rate_limited_total.inc,
        )

    def api_hooks(self) -> SweepJobsApiHooks:
        return SweepJobsApiHooks(
            on_submitted=self.jobs_submitted_total.inc,
            on_cancelled=self.cancel_requests_total.inc,
        )

    def hub_hooks(self) -> SweepBroadcastHubHooks:
        return SweepBroadcastHubHooks(on_dropped=self.hub_frames_dropped_total.inc)

    def observe_retry(self, outcome: str) -> None:
        self.retries_total.labels(outcome=outcome).inc()

    def _observe_job_finished(self, status: str) -> None:
        self.running_jobs.dec()
        self.jobs_finished_total.labels(status=status).inc()

    def _observe_cell(self, outcome: str, duration_seconds: float) -> None:
        self.cells_evaluated_total.labels(outcome=outcome).inc()
        self.cell_duration_seconds.observe(max(duration_seconds, 0.0))
