"""
Sweep API routes for submit, cancel, history, resume stream, export and single-cell retry.

Related:
  - apps/api/dto/sweeps.py
  - apps/api/wiring/modules/sweeps.py
  - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from starlette.responses import Response, StreamingResponse

from apps.api.dto import (
    SweepRetryRequest,
    SweepSubmitRequest,
    build_retry_sweep_cell_command,
    build_submit_sweep_command,
    build_sweep_job_response,
    build_sweep_jobs_list_response,
    build_sweep_retry_response,
    build_sweep_size_response,
)
from optisweep.contexts.sweeps.application.dto import build_sweep_owner_key
from optisweep.contexts.sweeps.application.use_cases import (
    CancelSweepJobUseCase,
    GetSweepJobUseCase,
    ListSweepJobsUseCase,
    RetrySweepCellUseCase,
    SubmitSweepJobUseCase,
    SweepResultsExportUseCase,
    map_sweep_exception,
)
from optisweep.platform.errors import OptisweepError

log = logging.getLogger(__name__)

_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def resolve_sweep_owner_key(
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
    session: str | None = Query(default=None),
) -> str | None:
    """
    Resolve reader ownership key from `X-Session-Id` header or `session` query parameter.

    Args:
        x_session_id: Optional session header value.
        session: Optional session query value (used by EventSource clients).
    Returns:
        str | None: Hashed owner key, or `None` for guests.
    Assumptions:
        Header wins when both are supplied.
    Raises:
        None.
    Side Effects:
        None.
    """
    raw = x_session_id if x_session_id else session
    return build_sweep_owner_key(session=raw)


def build_sweeps_router(
    *,
    submit_use_case: SubmitSweepJobUseCase,
    cancel_use_case: CancelSweepJobUseCase,
    get_use_case: GetSweepJobUseCase,
    list_use_case: ListSweepJobsUseCase,
    retry_use_case: RetrySweepCellUseCase,
    export_use_case: SweepResultsExportUseCase,
) -> APIRouter:
    """
    Build sweeps router exposing job lifecycle, history and retry endpoints.

    Args:
        submit_use_case: Submission use-case.
        cancel_use_case: Cancellation use-case.
        get_use_case: Single job read use-case.
        list_use_case: Owner history listing use-case.
        retry_use_case: Single-cell retry use-case.
        export_use_case: Stream, size and snapshot export use-case.
    Returns:
        APIRouter: Configured sweeps router.
    Assumptions:
        Handlers are `async` so job tasks and hub outboxes share the server event loop.
    Raises:
        ValueError: If one required dependency is missing.
    Side Effects:
        None.
    """
    if submit_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_router requires submit_use_case")
    if cancel_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_router requires cancel_use_case")
    if get_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_router requires get_use_case")
    if list_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_router requires list_use_case")
    if retry_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_router requires retry_use_case")
    if export_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_router requires export_use_case")

    router = APIRouter(prefix="/api", tags=["sweeps"])

    @router.post("/backtest")
    async def post_backtest(request: SweepSubmitRequest) -> dict[str, Any]:
        """
        Register a sweep job and start it in the background.

        Args:
            request: Strict parsed submission envelope.
        Returns:
            dict[str, Any]: `{jobId, message}` payload.
        Assumptions:
            Pre-expanded `combinations` are never re-expanded server-side.
        Raises:
            OptisweepError: Mapped validation/range/credentials errors.
        Side Effects:
            Registers a job and schedules its executor task.
        """
        try:
            job = submit_use_case.execute(command=build_submit_sweep_command(request=request))
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return {"jobId": str(job.job_id), "message": "Backtest started"}

    @router.post("/backtest/{job_id}/cancel")
    async def post_backtest_cancel(
        job_id: UUID,
        owner_key: str | None = Depends(resolve_sweep_owner_key),
    ) -> dict[str, bool]:
        try:
            cancelled = cancel_use_case.execute(job_id=job_id, owner_key=owner_key)
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return {"success": cancelled}

    @router.get("/jobs")
    async def get_jobs(
        owner_key: str | None = Depends(resolve_sweep_owner_key),
    ) -> list[dict[str, Any]]:
        try:
            items = list_use_case.execute(owner_key=owner_key)
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return build_sweep_jobs_list_response(items=items)

    @router.get("/jobs/{job_id}")
    async def get_job(
        job_id: UUID,
        owner_key: str | None = Depends(resolve_sweep_owner_key),
    ) -> dict[str, Any]:
        try:
            job = get_use_case.execute(job_id=job_id, owner_key=owner_key)
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return build_sweep_job_response(job=job)

    @router.get("/jobs/{job_id}/stream")
    async def get_job_stream(
        job_id: UUID,
        owner_key: str | None = Depends(resolve_sweep_owner_key),
    ) -> StreamingResponse:
        """
        Replay stored results as server-sent events (`metadata`, `results`, `complete`).

        Args:
            job_id: Requested job id.
            owner_key: Reader ownership key.
        Returns:
            StreamingResponse: `text/event-stream` response.
        Assumptions:
            Missing or foreign jobs are reported in-band with one `error` event.
        Raises:
            None.
        Side Effects:
            Reads registry or archive (off the event loop) lazily while streaming.
        """

        async def _frames() -> AsyncIterator[str]:
            async for frame in export_use_case.stream(job_id=job_id, owner_key=owner_key):
                yield frame.to_sse()
            log.debug("event=job_stream_finished job_id=%s", job_id)

        return StreamingResponse(
            _frames(),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @router.get("/jobs/{job_id}/size")
    async def get_job_size(
        job_id: UUID,
        owner_key: str | None = Depends(resolve_sweep_owner_key),
    ) -> dict[str, int]:
        try:
            estimate = await export_use_case.estimate_size(job_id=job_id, owner_key=owner_key)
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return build_sweep_size_response(estimate=estimate)

    @router.get("/jobs/{job_id}/export")
    async def get_job_export(
        job_id: UUID,
        owner_key: str | None = Depends(resolve_sweep_owner_key),
    ) -> Response:
        try:
            exported = await export_use_case.export(job_id=job_id, owner_key=owner_key)
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return Response(
            content=exported.content,
            media_type="application/gzip",
            headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
        )

    @router.post("/retry-backtest")
    async def post_retry_backtest(request: SweepRetryRequest) -> dict[str, Any]:
        """
        Re-evaluate one cell and write the outcome back into its job.

        Args:
            request: Strict parsed retry envelope.
        Returns:
            dict[str, Any]: `{success, result}` or `{success: false, error, result}`.
        Assumptions:
            Provider failures are reported in-band, not as HTTP errors.
        Raises:
            OptisweepError: Mapped credentials/not-found/validation errors.
        Side Effects:
            Calls provider, mutates job results, publishes live events.
        """
        try:
            outcome = await retry_use_case.execute(
                command=build_retry_sweep_cell_command(request=request)
            )
        except OptisweepError:
            raise
        except Exception as error:  # noqa: BLE001
            raise map_sweep_exception(error=error) from error
        return build_sweep_retry_response(outcome=outcome)

    return router
