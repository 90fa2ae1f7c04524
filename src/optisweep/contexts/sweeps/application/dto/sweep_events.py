from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal, Mapping
from uuid import UUID

from optisweep.contexts.sweeps.domain.entities import SweepScalar, SweepTestResult

SweepEventKind = Literal[
    "status",
    "pending",
    "running",
    "retrying",
    "result",
    "progress",
    "rate_limit",
    "error",
    "complete",
    "saved",
]
SWEEP_CANCELLED_MESSAGE = "Backtest cancelled by user"


@dataclass(frozen=True, slots=True)
class SweepEvent:
    """
    Tagged live event routed verbatim by the broadcast hub.

    The hub never interprets `payload`; it only routes by job id.

    Related:
      - src/optisweep/contexts/sweeps/application/services/broadcast_hub.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - apps/api/routes/sweeps_ws.py
    """

    kind: SweepEventKind
    payload: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def to_message(self) -> dict[str, Any]:
        """
        Convert event into JSON frame `{type, ...payload}`.

        Args:
            None.
        Returns:
            dict[str, Any]: Wire frame.
        Assumptions:
            Payload keys never include `type`.
        Raises:
            None.
        Side Effects:
            None.
        """
        message: dict[str, Any] = {"type": self.kind}
        message.update(self.payload)
        return message


def status_event(
    *,
    job_id: UUID,
    status: str,
    current: int | None = None,
    total: int | None = None,
) -> SweepEvent:
    return SweepEvent(
        kind="status",
        payload={"status": status, "jobId": str(job_id), "current": current, "total": total},
    )


def cell_state_event(
    *,
    kind: Literal["pending", "running"],
    symbol: str,
    timeframe: str,
    options: Mapping[str, SweepScalar],
) -> SweepEvent:
    """
    Build fine-grained per-cell animation event.

    Args:
        kind: `pending` for planned cells, `running` for the cell being evaluated.
        symbol: Cell symbol.
        timeframe: Cell timeframe.
        options: Cell combination.
    Returns:
        SweepEvent: `{type, data: {symbol, timeframe, options, status}}` event.
    Assumptions:
        Observers may ignore these optional variants.
    Raises:
        None.
    Side Effects:
        None.
    """
    return SweepEvent(
        kind=kind,
        payload={
            "data": {
                "symbol": symbol,
                "timeframe": timeframe,
                "options": dict(options),
                "status": kind,
            }
        },
    )


def retrying_event(
    *,
    symbol: str,
    timeframe: str,
    options: Mapping[str, SweepScalar],
) -> SweepEvent:
    return SweepEvent(
        kind="retrying",
        payload={
            "data": {
                "symbol": symbol,
                "timeframe": timeframe,
                "options": dict(options),
                "status": "retrying",
            }
        },
    )


def result_event(*, result: SweepTestResult) -> SweepEvent:
    return SweepEvent(kind="result", payload={"data": result.to_mapping()})


def progress_event(*, current: int, total: int) -> SweepEvent:
    percent = 100 if total == 0 else round(current / total * 100)
    return SweepEvent(
        kind="progress",
        payload={"current": current, "total": total, "percent": percent},
    )


def rate_limit_event(*, message: str) -> SweepEvent:
    return SweepEvent(kind="rate_limit", payload={"message": message})


def error_event(*, message: str) -> SweepEvent:
    return SweepEvent(kind="error", payload={"message": message})


def complete_event(*, job_id: UUID, result_count: int) -> SweepEvent:
    return SweepEvent(
        kind="complete",
        payload={"jobId": str(job_id), "resultCount": result_count},
    )


def saved_event(*, job_id: UUID) -> SweepEvent:
    return SweepEvent(kind="saved", payload={"jobId": str(job_id)})
