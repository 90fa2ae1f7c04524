from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Literal, Mapping, Sequence, Union, cast
from uuid import UUID

from optisweep.contexts.sweeps.domain.errors import SweepJobTransitionError

SweepScalar = Union[bool, int, float, str]
SweepJobStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
SweepCellKey = tuple[str, str, tuple[tuple[str, SweepScalar], ...]]

_ACTIVE_JOB_STATUSES: frozenset[str] = frozenset({"pending", "running"})
_TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})
_ALLOWED_JOB_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "cancelled"}),
    "running": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}
_SUMMARY_WIRE_KEYS: tuple[tuple[str, str], ...] = (
    ("net_profit", "netProfit"),
    ("total_closed_trades", "totalClosedTrades"),
    ("percent_profitable", "percentProfitable"),
    ("profit_factor", "profitFactor"),
    ("max_drawdown", "maxDrawdown"),
    ("avg_trade", "avgTrade"),
)


def is_terminal_sweep_job_status(status: str) -> bool:
    """
    Return whether status literal belongs to the terminal set.

    Args:
        status: Job status literal.
    Returns:
        bool: `True` for `completed|failed|cancelled`.
    Assumptions:
        Unknown literals are treated as non-terminal.
    Raises:
        None.
    Side Effects:
        None.
    """
    return status in _TERMINAL_JOB_STATUSES


def build_sweep_cell_key(
    *,
    symbol: str,
    timeframe: str,
    options: Mapping[str, SweepScalar],
) -> SweepCellKey:
    """
    Build hashable cell identity used to match retried cells against recorded results.

    Args:
        symbol: Instrument symbol.
        timeframe: Timeframe literal.
        options: One parameter combination.
    Returns:
        SweepCellKey: `(symbol, timeframe, sorted option items)` tuple.
    Assumptions:
        Option ordering is irrelevant for identity; values compare by Python equality.
    Raises:
        None.
    Side Effects:
        None.
    """
    return (
        symbol,
        timeframe,
        tuple(sorted(((str(key), value) for key, value in options.items()), key=_item_key)),
    )


@dataclass(frozen=True, slots=True)
class SweepCellSummary:
    """
    Fixed summary metrics extracted from one provider report.

    Related:
      - src/optisweep/contexts/sweeps/application/services/provider_outcome_v1.py
      - src/optisweep/contexts/sweeps/domain/entities/sweep_job.py
    """

    net_profit: float | None = None
    total_closed_trades: float | None = None
    percent_profitable: float | None = None
    profit_factor: float | None = None
    max_drawdown: float | None = None
    avg_trade: float | None = None

    def to_mapping(self) -> dict[str, float | None]:
        """
        Convert summary into camelCase wire mapping.

        Args:
            None.
        Returns:
            dict[str, float | None]: Wire payload with all six keys present.
        Assumptions:
            Missing metrics stay `None`.
        Raises:
            None.
        Side Effects:
            None.
        """
        return {wire: getattr(self, attr) for attr, wire in _SUMMARY_WIRE_KEYS}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> SweepCellSummary:
        """
        Restore summary from wire mapping.

        Args:
            payload: camelCase summary mapping.
        Returns:
            SweepCellSummary: Restored summary.
        Assumptions:
            Unknown keys are ignored.
        Raises:
            None.
        Side Effects:
            None.
        """
        return cls(**{attr: payload.get(wire) for attr, wire in _SUMMARY_WIRE_KEYS})


@dataclass(frozen=True, slots=True)
class SweepTestResult:
    """
    Outcome of one `(symbol, timeframe, combination)` cell: success summary or failure text.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - src/optisweep/contexts/sweeps/application/use_cases/retry_sweep_cell_v1.py
      - apps/api/dto/sweeps.py
    """

    symbol: str
    timeframe: str
    options: Mapping[str, SweepScalar]
    summary: SweepCellSummary | None = None
    full_report: Mapping[str, Any] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        """
        Validate cell identity and freeze option mapping.

        Args:
            None.
        Returns:
            None.
        Assumptions:
            Failure results never carry summary or report payloads.
        Raises:
            SweepJobTransitionError: If identity is blank or payload shape is mixed.
        Side Effects:
            Replaces `options` with immutable mapping proxy preserving key order.
        """
        if not self.symbol.strip():
            raise SweepJobTransitionError("SweepTestResult.symbol must be non-empty")
        if not self.timeframe.strip():
            raise SweepJobTransitionError("SweepTestResult.timeframe must be non-empty")
        if self.error is not None and (self.summary is not None or self.full_report is not None):
            raise SweepJobTransitionError(
                "SweepTestResult failure must not carry summary or full_report"
            )
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    @classmethod
    def success(
        cls,
        *,
        symbol: str,
        timeframe: str,
        options: Mapping[str, SweepScalar],
        summary: SweepCellSummary | None,
        full_report: Mapping[str, Any] | None,
    ) -> SweepTestResult:
        return cls(
            symbol=symbol,
            timeframe=timeframe,
            options=options,
            summary=summary,
            full_report=full_report,
        )

    @classmethod
    def failure(
        cls,
        *,
        symbol: str,
        timeframe: str,
        options: Mapping[str, SweepScalar],
        error: str,
    ) -> SweepTestResult:
        return cls(symbol=symbol, timeframe=timeframe, options=options, error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def cell_key(self) -> SweepCellKey:
        return build_sweep_cell_key(
            symbol=self.symbol,
            timeframe=self.timeframe,
            options=self.options,
        )

    def to_mapping(self) -> dict[str, Any]:
        """
        Convert result into wire mapping used by live events, streams and archives.

        Args:
            None.
        Returns:
            dict[str, Any]: `{symbol, timeframe, options, report, fullReport}` or
            `{symbol, timeframe, options, error}`.
        Assumptions:
            Full report is an opaque JSON-compatible provider payload.
        Raises:
            None.
        Side Effects:
            None.
        """
        payload: dict[str, Any] = {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "options": dict(self.options),
        }
        if self.error is not None:
            payload["error"] = self.error
            return payload
        payload["report"] = self.summary.to_mapping() if self.summary is not None else None
        payload["fullReport"] = dict(self.full_report) if self.full_report is not None else None
        return payload

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> SweepTestResult:
        """
        Restore result from wire mapping produced by `to_mapping`.

        Args:
            payload: Result wire mapping.
        Returns:
            SweepTestResult: Restored immutable result.
        Assumptions:
            Payload was written by this module (archive files).
        Raises:
            KeyError: If identity keys are missing.
            SweepJobTransitionError: If payload shape is invalid.
        Side Effects:
            None.
        """
        error = payload.get("error")
        if error is not None:
            return cls.failure(
                symbol=str(payload["symbol"]),
                timeframe=str(payload["timeframe"]),
                options=payload.get("options") or {},
                error=str(error),
            )
        report = payload.get("report")
        full_report = payload.get("fullReport")
        return cls.success(
            symbol=str(payload["symbol"]),
            timeframe=str(payload["timeframe"]),
            options=payload.get("options") or {},
            summary=SweepCellSummary.from_mapping(report) if report is not None else None,
            full_report=full_report,
        )


@dataclass(frozen=True, slots=True)
class SweepRequestSnapshot:
    """
    Immutable snapshot of the originating submission with already-expanded combinations.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
    """

    indicator_id: str
    symbols: tuple[str, ...]
    timeframes: tuple[str, ...]
    combinations: tuple[Mapping[str, SweepScalar], ...]
    date_from: str | None = None
    date_to: str | None = None
    ranges: Mapping[str, Any] | None = None
    max_parallel_connections: int | None = None
    account_type: str | None = None

    def __post_init__(self) -> None:
        """
        Validate non-empty axes and freeze combination mappings.

        Args:
            None.
        Returns:
            None.
        Assumptions:
            Combination list is the single source of truth for execution.
        Raises:
            SweepJobTransitionError: If one axis is empty.
        Side Effects:
            Converts sequences into tuples and mappings into immutable proxies.
        """
        if not self.indicator_id.strip():
            raise SweepJobTransitionError("SweepRequestSnapshot.indicator_id must be non-empty")
        if len(self.symbols) == 0:
            raise SweepJobTransitionError("SweepRequestSnapshot.symbols must be non-empty")
        if len(self.timeframes) == 0:
            raise SweepJobTransitionError("SweepRequestSnapshot.timeframes must be non-empty")
        if len(self.combinations) == 0:
            raise SweepJobTransitionError("SweepRequestSnapshot.combinations must be non-empty")
        object.__setattr__(self, "symbols", tuple(self.symbols))
        object.__setattr__(self, "timeframes", tuple(self.timeframes))
        object.__setattr__(
            self,
            "combinations",
            tuple(MappingProxyType(dict(item)) for item in self.combinations),
        )

    @property
    def total_cells(self) -> int:
        return len(self.symbols) * len(self.timeframes) * len(self.combinations)

    def to_mapping(self) -> dict[str, Any]:
        """
        Convert snapshot into camelCase wire mapping.

        Args:
            None.
        Returns:
            dict[str, Any]: Request snapshot payload.
        Assumptions:
            Credentials are never part of the snapshot.
        Raises:
            None.
        Side Effects:
            None.
        """
        return {
            "indicatorId": self.indicator_id,
            "symbols": list(self.symbols),
            "timeframes": list(self.timeframes),
            "combinations": [dict(item) for item in self.combinations],
            "dateFrom": self.date_from,
            "dateTo": self.date_to,
            "ranges": dict(self.ranges) if self.ranges is not None else None,
            "maxParallelConnections": self.max_parallel_connections,
            "accountType": self.account_type,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> SweepRequestSnapshot:
        return cls(
            indicator_id=str(payload["indicatorId"]),
            symbols=tuple(str(item) for item in payload["symbols"]),
            timeframes=tuple(str(item) for item in payload["timeframes"]),
            combinations=tuple(payload["combinations"]),
            date_from=payload.get("dateFrom"),
            date_to=payload.get("dateTo"),
            ranges=payload.get("ranges"),
            max_parallel_connections=payload.get("maxParallelConnections"),
            account_type=payload.get("accountType"),
        )


@dataclass(slots=True, eq=False)
class SweepJob:
    """
    Mutable sweep job record with an explicit lifecycle state machine.

    Metadata is owned by the job registry; `results`, `status` and progress counters are
    mutated only by the single executor task driving the job (plus out-of-band retry
    write-backs and the cancel request flag).

    Related:
      - src/optisweep/contexts/sweeps/application/ports/sweep_job_registry.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
    """

    job_id: UUID
    owner_key: str | None
    request: SweepRequestSnapshot
    created_at: datetime
    status: SweepJobStatus = "pending"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    cancel_requested: bool = False
    error: str | None = None
    completed_cells: int = 0
    results: list[SweepTestResult] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.status not in _ALLOWED_JOB_STATUS_TRANSITIONS:
            raise SweepJobTransitionError(f"SweepJob.status is unsupported: {self.status!r}")
        _ensure_utc_datetime(name="created_at", value=self.created_at)

    @classmethod
    def create_pending(
        cls,
        *,
        job_id: UUID,
        owner_key: str | None,
        request: SweepRequestSnapshot,
        created_at: datetime,
    ) -> SweepJob:
        """
        Build a fresh `pending` job with empty results.

        Args:
            job_id: Globally unique job identifier.
            owner_key: Opaque ownership key (hashed session) or `None` for guests.
            request: Validated request snapshot.
            created_at: Creation timestamp in UTC.
        Returns:
            SweepJob: New pending job.
        Assumptions:
            Caller already expanded the combination list.
        Raises:
            SweepJobTransitionError: If `created_at` is not UTC-aware.
        Side Effects:
            None.
        """
        return cls(job_id=job_id, owner_key=owner_key, request=request, created_at=created_at)

    @property
    def total_cells(self) -> int:
        return self.request.total_cells

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_JOB_STATUSES

    @property
    def progress_percent(self) -> int:
        if self.total_cells == 0:
            return 100
        return round(self.completed_cells / self.total_cells * 100)

    def mark_running(self, *, now: datetime) -> None:
        """
        Transition `pending -> running`.

        Args:
            now: Transition timestamp in UTC.
        Returns:
            None.
        Assumptions:
            Called once by the executor task that owns the job.
        Raises:
            SweepJobTransitionError: If job is not pending.
        Side Effects:
            Mutates `status` and `started_at`.
        """
        self._transition(next_status="running")
        self.started_at = now

    def mark_completed(self, *, now: datetime) -> None:
        self._transition(next_status="completed")
        self.finished_at = now

    def mark_failed(self, *, now: datetime, error: str) -> None:
        """
        Transition `running -> failed` and record terminal error text.

        Args:
            now: Transition timestamp in UTC.
            error: Sanitized terminal error message.
        Returns:
            None.
        Assumptions:
            Error text is non-empty and user-facing.
        Raises:
            SweepJobTransitionError: If job is not running or error is blank.
        Side Effects:
            Mutates `status`, `finished_at` and `error`.
        """
        if not error.strip():
            raise SweepJobTransitionError("SweepJob failure error must be non-empty")
        self._transition(next_status="failed")
        self.finished_at = now
        self.error = error.strip()

    def request_cancel(self, *, now: datetime) -> bool:
        """
        Set cancellation flag and move an active job straight to `cancelled`.

        Args:
            now: Cancel timestamp in UTC.
        Returns:
            bool: `True` when the job transitioned, `False` for terminal jobs (no-op).
        Assumptions:
            The executor observes the flag only at the next cell boundary.
        Raises:
            None.
        Side Effects:
            Mutates `cancel_requested`, `status` and `finished_at` for active jobs.
        """
        if self.is_terminal:
            return False
        self.cancel_requested = True
        self._transition(next_status="cancelled")
        self.finished_at = now
        return True

    def record_result(self, *, result: SweepTestResult) -> int:
        """
        Append one executed cell outcome in strict execution order.

        Args:
            result: Cell outcome.
        Returns:
            int: Position of the appended result.
        Assumptions:
            A cell already in flight when cancellation lands is still recorded.
        Raises:
            SweepJobTransitionError: If job never started or finished otherwise.
        Side Effects:
            Appends to `results`.
        """
        in_flight_after_cancel = self.status == "cancelled" and self.started_at is not None
        if self.status != "running" and not in_flight_after_cancel:
            raise SweepJobTransitionError(
                f"SweepJob cannot record results in status {self.status!r}"
            )
        self.results.append(result)
        return len(self.results) - 1

    def advance_progress(self) -> int:
        self.completed_cells += 1
        return self.completed_cells

    def upsert_result(self, *, result: SweepTestResult) -> tuple[int, bool]:
        """
        Replace the recorded result for the same cell in place, or append a new one.

        Args:
            result: Retried cell outcome.
        Returns:
            tuple[int, bool]: Result position and `True` when an entry was replaced.
        Assumptions:
            Caller avoids overlapping retries of one cell.
        Raises:
            None.
        Side Effects:
            Mutates `results` without changing job status.
        """
        target_key = result.cell_key
        for index, existing in enumerate(self.results):
            if existing.cell_key == target_key:
                self.results[index] = result
                return index, True
        self.results.append(result)
        return len(self.results) - 1, False

    def to_mapping(self, *, include_results: bool = True) -> dict[str, Any]:
        """
        Convert job into wire/archive mapping.

        Args:
            include_results: Whether to embed the full result list.
        Returns:
            dict[str, Any]: camelCase job payload.
        Assumptions:
            Credentials are never stored on the job.
        Raises:
            None.
        Side Effects:
            None.
        """
        payload: dict[str, Any] = {
            "id": str(self.job_id),
            "ownerKey": self.owner_key,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at is not None else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at is not None else None,
            "cancelled": self.cancel_requested,
            "error": self.error,
            "completedCells": self.completed_cells,
            "totalCells": self.total_cells,
            "resultCount": len(self.results),
            "config": self.request.to_mapping(),
        }
        if include_results:
            payload["results"] = [item.to_mapping() for item in self.results]
        return payload

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> SweepJob:
        """
        Restore job from archive mapping produced by `to_mapping`.

        Args:
            payload: Archived job mapping.
        Returns:
            SweepJob: Restored job record.
        Assumptions:
            Archived jobs are read-only history; restored status is trusted as stored.
        Raises:
            KeyError: If required keys are missing.
            ValueError: If identifiers or timestamps are malformed.
        Side Effects:
            None.
        """
        raw_results: Sequence[Mapping[str, Any]] = payload.get("results") or ()
        return cls(
            job_id=UUID(str(payload["id"])),
            owner_key=payload.get("ownerKey"),
            request=SweepRequestSnapshot.from_mapping(payload["config"]),
            created_at=_parse_datetime(payload["createdAt"]),
            status=cast(SweepJobStatus, payload["status"]),
            started_at=_parse_optional_datetime(payload.get("startedAt")),
            finished_at=_parse_optional_datetime(payload.get("finishedAt")),
            cancel_requested=bool(payload.get("cancelled", False)),
            error=payload.get("error"),
            completed_cells=int(payload.get("completedCells", 0)),
            results=[SweepTestResult.from_mapping(item) for item in raw_results],
        )

    def _transition(self, *, next_status: SweepJobStatus) -> None:
        allowed = _ALLOWED_JOB_STATUS_TRANSITIONS[self.status]
        if next_status not in allowed:
            raise SweepJobTransitionError(
                f"SweepJob invalid transition {self.status!r} -> {next_status!r}"
            )
        self.status = next_status


def _item_key(item: tuple[str, SweepScalar]) -> str:
    return item[0]


def _ensure_utc_datetime(*, name: str, value: datetime) -> None:
    """
    Validate timestamp is timezone-aware UTC.

    Args:
        name: Field name for error messages.
        value: Timestamp to validate.
    Returns:
        None.
    Assumptions:
        All job timestamps are produced by UTC clocks.
    Raises:
        SweepJobTransitionError: If timestamp is naive or non-UTC.
    Side Effects:
        None.
    """
    if value.tzinfo is None or value.utcoffset() != timezone.utc.utcoffset(value):
        raise SweepJobTransitionError(f"SweepJob.{name} must be timezone-aware UTC datetime")


def _parse_datetime(raw: Any) -> datetime:
    parsed = datetime.fromisoformat(str(raw))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_optional_datetime(raw: Any) -> datetime | None:
    if raw is None:
        return None
    return _parse_datetime(raw)
