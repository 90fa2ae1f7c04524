"""
Composition helpers for the sweeps API module.

Related:
  - apps/api/main/app.py
  - apps/api/routes/sweeps.py
  - src/optisweep/contexts/sweeps/adapters/outbound/config/sweeps_runtime_config.py
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from fastapi import APIRouter
from prometheus_client import CollectorRegistry

from apps.api.routes import build_sweeps_router, build_sweeps_ws_router
from apps.api.wiring.modules.sweeps_metrics import SweepMetrics
from optisweep.contexts.sweeps.adapters.outbound import (
    FileSweepJobArchive,
    HttpBacktestProvider,
    InMemorySweepJobRegistry,
    SweepsRuntimeConfig,
    load_sweeps_runtime_config,
    resolve_sweeps_config_path,
)
from optisweep.contexts.sweeps.application.ports import BacktestProvider, SweepJobArchive
from optisweep.contexts.sweeps.application.services import (
    AsyncioSweepJobDispatcher,
    SweepBroadcastHub,
    SweepJobExecutor,
    SweepJobLookup,
)
from optisweep.contexts.sweeps.application.use_cases import (
    CancelSweepJobUseCase,
    GetSweepJobUseCase,
    ListSweepJobsUseCase,
    RetrySweepCellUseCase,
    SubmitSweepJobUseCase,
    SweepResultsExportUseCase,
)
from optisweep.contexts.sweeps.domain.errors import SweepStorageError

log = logging.getLogger(__name__)

NowProvider = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class SweepsApiModule:
    """
    SweepsApiModule — wired sweeps components shared by HTTP routes, websocket and lifespan.

    Related:
      - apps/api/wiring/modules/sweeps.py
      - apps/api/main/app.py
      - apps/api/routes/sweeps_ws.py
    """

    config: SweepsRuntimeConfig
    registry: InMemorySweepJobRegistry
    archive: SweepJobArchive | None
    hub: SweepBroadcastHub
    dispatcher: AsyncioSweepJobDispatcher
    metrics: SweepMetrics
    router: APIRouter
    ws_router: APIRouter


def build_sweeps_api_module(
    *,
    environ: Mapping[str, str],
    config: SweepsRuntimeConfig | None = None,
    provider: BacktestProvider | None = None,
    metrics_registry: CollectorRegistry | None = None,
    now_provider: NowProvider | None = None,
) -> SweepsApiModule:
    """
    Build fully wired sweeps module from runtime config.

    Args:
        environ: Runtime environment mapping used for config path resolution.
        config: Optional preloaded config (tests).
        provider: Optional provider override (tests); defaults to the HTTP adapter.
        metrics_registry: Optional Prometheus registry; a fresh one is created when omitted.
        now_provider: Optional UTC clock shared by use-cases and executor.
    Returns:
        SweepsApiModule: Wired components.
    Assumptions:
        One module instance per application; every job task runs on the server event loop.
    Raises:
        FileNotFoundError: If the config file is missing.
        ValueError: If config is invalid or the HTTP provider lacks `base_url`.
    Side Effects:
        Creates the archive directory when the archive is enabled.
    """
    if config is None:
        config = load_sweeps_runtime_config(resolve_sweeps_config_path(environ=environ))
    if provider is None:
        provider = _build_http_provider(config=config)

    metrics = SweepMetrics(registry=metrics_registry or CollectorRegistry())
    registry = InMemorySweepJobRegistry()
    archive: SweepJobArchive | None = None
    if config.archive.enabled:
        archive = FileSweepJobArchive(
            directory=config.archive.directory,
            retention_days=config.archive.retention_days,
        )
    lookup = SweepJobLookup(registry=registry, archive=archive)
    hub = SweepBroadcastHub(job_reader=lookup.find_live, hooks=metrics.hub_hooks())
    executor = SweepJobExecutor(
        registry=registry,
        provider=provider,
        publisher=hub,
        archive=archive,
        cell_timeout_seconds=config.executor.cell_timeout_seconds,
        dispatch_delay_seconds=config.executor.dispatch_delay_seconds,
        announce_pending_cells=config.executor.announce_pending_cells,
        hooks=metrics.executor_hooks(),
        now_provider=now_provider,
    )
    dispatcher = AsyncioSweepJobDispatcher(executor=executor)
    api_hooks = metrics.api_hooks()

    router = build_sweeps_router(
        submit_use_case=SubmitSweepJobUseCase(
            registry=registry,
            dispatcher=dispatcher,
            archive=archive,
            max_values_per_key=config.generator.max_values_per_key,
            hooks=api_hooks,
            now_provider=now_provider,
        ),
        cancel_use_case=CancelSweepJobUseCase(
            lookup=lookup,
            publisher=hub,
            archive=archive,
            hooks=api_hooks,
            now_provider=now_provider,
        ),
        get_use_case=GetSweepJobUseCase(lookup=lookup),
        list_use_case=ListSweepJobsUseCase(lookup=lookup),
        retry_use_case=RetrySweepCellUseCase(
            lookup=lookup,
            provider=provider,
            publisher=hub,
            archive=archive,
            cell_timeout_seconds=config.executor.cell_timeout_seconds,
            on_retry=metrics.observe_retry,
            now_provider=now_provider,
        ),
        export_use_case=SweepResultsExportUseCase(
            lookup=lookup,
            batch_size=config.streaming.batch_size,
        ),
    )
    ws_router = build_sweeps_ws_router(
        hub=hub,
        queue_size=config.hub.subscriber_queue_size,
    )
    return SweepsApiModule(
        config=config,
        registry=registry,
        archive=archive,
        hub=hub,
        dispatcher=dispatcher,
        metrics=metrics,
        router=router,
        ws_router=ws_router,
    )


async def run_archive_compression_loop(
    *,
    archive: SweepJobArchive,
    interval_seconds: float,
    now_provider: NowProvider | None = None,
) -> None:
    """
    Compress stale archive files at startup and then periodically until cancelled.

    Args:
        archive: Durable job archive.
        interval_seconds: Pause between compression passes.
        now_provider: Optional UTC clock.
    Returns:
        None.
    Assumptions:
        Runs as one background task owned by the application lifespan.
    Raises:
        asyncio.CancelledError: On application shutdown.
    Side Effects:
        Rewrites stale archive files as gzip.
    """
    clock = now_provider or _utc_now
    while True:
        try:
            compressed = await asyncio.to_thread(archive.compress_stale, now=clock())
        except SweepStorageError:
            log.exception("event=archive_compression_failed")
        else:
            log.info("event=archive_compression_pass compressed=%s", compressed)
        await asyncio.sleep(interval_seconds)


def _build_http_provider(*, config: SweepsRuntimeConfig) -> HttpBacktestProvider:
    if config.provider.base_url is None:
        raise ValueError("sweeps.provider.base_url is required for the HTTP provider")
    return HttpBacktestProvider(
        base_url=config.provider.base_url,
        connect_timeout_seconds=config.provider.connect_timeout_seconds,
        request_timeout_seconds=config.executor.cell_timeout_seconds,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
