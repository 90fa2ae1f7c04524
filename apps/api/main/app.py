"""
FastAPI application factory for the optisweep API.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from apps.api.common import register_api_error_handlers
from apps.api.wiring.modules import (
    SweepsApiModule,
    build_sweeps_api_module,
    run_archive_compression_loop,
)
from optisweep.contexts.sweeps.application.ports import BacktestProvider

log = logging.getLogger(__name__)


def create_app(
    *,
    environ: Mapping[str, str] | None = None,
    provider: BacktestProvider | None = None,
) -> FastAPI:
    """
    Build FastAPI app with the sweeps module, live channel and metrics wired at startup.

    Related: apps.api.routes.sweeps,
      apps.api.routes.sweeps_ws,
      apps.api.wiring.modules.sweeps

    Args:
        environ: Optional environment mapping override.
        provider: Optional provider override, used by tests instead of the HTTP adapter.
    Returns:
        FastAPI: Application instance with registered routers.
    Assumptions:
        Module wiring performs fail-fast config validation before first request.
    Raises:
        FileNotFoundError: If the sweeps config path is missing.
        ValueError: If config parsing or validation fails.
    Side Effects:
        Reads sweeps YAML and creates the archive directory.
    """
    effective_environ = os.environ if environ is None else environ
    module = build_sweeps_api_module(environ=effective_environ, provider=provider)

    app = FastAPI(
        title="optisweep API",
        version="1.0.0",
        lifespan=_build_lifespan(module=module),
    )
    app.state.sweeps = module
    register_api_error_handlers(app=app)
    app.include_router(module.router)
    app.include_router(module.ws_router)
    metrics_registry = module.metrics.registry

    @app.get("/metrics", include_in_schema=False)
    def get_metrics() -> Response:
        return Response(generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)

    return app


def _build_lifespan(*, module: SweepsApiModule):
    """
    Build lifespan owning archive compression and in-flight job shutdown.

    Args:
        module: Wired sweeps module.
    Returns:
        Callable: FastAPI lifespan context factory.
    Assumptions:
        Jobs still running at shutdown are marked failed by their executor task.
    Raises:
        None.
    Side Effects:
        Starts and cancels background tasks.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        compression: asyncio.Task[None] | None = None
        archive = module.archive
        if archive is not None:
            compression = asyncio.create_task(
                run_archive_compression_loop(
                    archive=archive,
                    interval_seconds=module.config.archive.compress_interval_seconds,
                )
            )
        log.info("event=api_started archive_enabled=%s", archive is not None)
        try:
            yield
        finally:
            if compression is not None:
                compression.cancel()
                try:
                    await compression
                except asyncio.CancelledError:
                    pass
            await module.dispatcher.shutdown()
            log.info("event=api_stopped")

    return lifespan
