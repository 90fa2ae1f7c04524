"""
Pydantic models and mappers for the sweeps HTTP surface.

Related:
  - apps/api/routes/sweeps.py
  - src/optisweep/contexts/sweeps/application/dto/sweep_request.py
  - src/optisweep/contexts/sweeps/domain/entities/sweep_job.py
"""

from __future__ import annotations

from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from optisweep.contexts.sweeps.application.dto import (
    RetrySweepCellCommand,
    SubmitSweepCommand,
    SweepParameterRange,
    SweepProviderCredentials,
)
from optisweep.contexts.sweeps.application.services import SweepJobListItem
from optisweep.contexts.sweeps.application.use_cases import (
    RetrySweepCellOutcome,
    SweepExportSizeEstimate,
)
from optisweep.contexts.sweeps.domain.entities import SweepJob

SweepOptionValue = Union[bool, int, float, str]

_CAMEL_STRICT_CONFIG = ConfigDict(
    extra="forbid",
    alias_generator=to_camel,
    populate_by_name=True,
)


class SweepRangeRequest(BaseModel):
    """
    One `{active, min, max, step}` range declaration keyed by parameter name.

    Related:
      - src/optisweep/contexts/sweeps/application/services/parameter_space_v1.py
      - apps/api/dto/sweeps.py
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    active: bool = False
    minimum: int | float | None = Field(default=None, alias="min")
    maximum: int | float | None = Field(default=None, alias="max")
    step: int | float | None = None


class SweepSubmitRequest(BaseModel):
    """
    Sweep submission envelope (`combinations xor baseOptions`).

    Shape checks beyond field types (emptiness, xor, window dates) are enforced by
    `SubmitSweepCommand` so both code paths report one `validation_error` payload.

    Related:
      - apps/api/routes/sweeps.py
      - src/optisweep/contexts/sweeps/application/dto/sweep_request.py
    """

    model_config = _CAMEL_STRICT_CONFIG

    indicator_id: str
    symbols: list[str]
    timeframes: list[str]
    combinations: list[dict[str, SweepOptionValue]] | None = None
    base_options: dict[str, SweepOptionValue] | None = None
    ranges: dict[str, SweepRangeRequest] | None = None
    date_from: str | None = None
    date_to: str | None = None
    session: str | None = None
    signature: str | None = None
    max_parallel_connections: int | None = None
    account_type: str | None = None


class SweepRetryRequest(BaseModel):
    """
    Single-cell retry envelope.

    Related:
      - apps/api/routes/sweeps.py
      - src/optisweep/contexts/sweeps/application/use_cases/retry_sweep_cell_v1.py
    """

    model_config = _CAMEL_STRICT_CONFIG

    job_id: UUID
    symbol: str
    timeframe: str
    options: dict[str, SweepOptionValue]
    indicator_id: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    session: str | None = None
    signature: str | None = None


def build_submit_sweep_command(*, request: SweepSubmitRequest) -> SubmitSweepCommand:
    """
    Convert parsed submission envelope into application command.

    Args:
        request: Strict parsed submission.
    Returns:
        SubmitSweepCommand: Validated command.
    Assumptions:
        Credentials stay `None` when either part is missing; the use-case rejects them.
    Raises:
        SweepValidationError: If the command shape is invalid.
    Side Effects:
        None.
    """
    ranges = None
    if request.ranges is not None:
        ranges = {
            key: SweepParameterRange(
                active=item.active,
                minimum=item.minimum,
                maximum=item.maximum,
                step=item.step,
            )
            for key, item in request.ranges.items()
        }
    return SubmitSweepCommand(
        indicator_id=request.indicator_id,
        symbols=tuple(request.symbols),
        timeframes=tuple(request.timeframes),
        credentials=_credentials(session=request.session, signature=request.signature),
        combinations=(
            tuple(request.combinations) if request.combinations is not None else None
        ),
        base_options=request.base_options,
        ranges=ranges,
        date_from=request.date_from,
        date_to=request.date_to,
        max_parallel_connections=request.max_parallel_connections,
        account_type=request.account_type,
    )


def build_retry_sweep_cell_command(*, request: SweepRetryRequest) -> RetrySweepCellCommand:
    return RetrySweepCellCommand(
        job_id=request.job_id,
        symbol=request.symbol,
        timeframe=request.timeframe,
        options=request.options,
        credentials=_credentials(session=request.session, signature=request.signature),
        indicator_id=request.indicator_id,
        date_from=request.date_from,
        date_to=request.date_to,
    )


def build_sweep_job_response(*, job: SweepJob) -> dict[str, Any]:
    """
    Render full job payload without the ownership key.

    Args:
        job: Live or archived job.
    Returns:
        dict[str, Any]: camelCase job payload with results.
    Assumptions:
        Owner key is an internal partition token and never leaves the process.
    Raises:
        None.
    Side Effects:
        None.
    """
    payload = job.to_mapping(include_results=True)
    payload.pop("ownerKey", None)
    return payload


def build_sweep_jobs_list_response(*, items: tuple[SweepJobListItem, ...]) -> list[dict[str, Any]]:
    return [
        {
            "id": str(item.job_id),
            "date": item.created_at.isoformat(),
            "status": item.status,
            "resultCount": item.result_count,
            "isArchived": item.is_archived,
        }
        for item in items
    ]


def build_sweep_size_response(*, estimate: SweepExportSizeEstimate) -> dict[str, int]:
    return {
        "compressedSize": estimate.compressed_size,
        "resultCount": estimate.result_count,
    }


def build_sweep_retry_response(*, outcome: RetrySweepCellOutcome) -> dict[str, Any]:
    result = outcome.result.to_mapping()
    if outcome.success:
        return {"success": True, "result": result}
    return {"success": False, "error": outcome.result.error, "result": result}


def _credentials(*, session: str | None, signature: str | None) -> SweepProviderCredentials | None:
    if session is None or signature is None:
        return None
    return SweepProviderCredentials(session=session, signature=signature)
