from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from optisweep.contexts.sweeps.domain.entities import SweepScalar
from optisweep.contexts.sweeps.domain.errors import SweepValidationError

DEFAULT_LOOKBACK_DAYS = 365
WARMUP_BUFFER_SECONDS = 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class SweepParameterRange:
    """
    Range declaration for one parameter key (`{active, min, max, step}` or `{active}`).

    Related:
      - src/optisweep/contexts/sweeps/application/services/parameter_space_v1.py
      - apps/api/dto/sweeps.py
    """

    active: bool
    minimum: int | float | None = None
    maximum: int | float | None = None
    step: int | float | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {"active": self.active, "min": self.minimum, "max": self.maximum, "step": self.step}


@dataclass(frozen=True, slots=True)
class SweepProviderCredentials:
    """
    Provider session credentials (`session` + `signature`), never logged or archived.

    Related:
      - src/optisweep/contexts/sweeps/application/ports/backtest_provider.py
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
    """

    session: str = field(repr=False)
    signature: str = field(repr=False)

    @property
    def is_complete(self) -> bool:
        return bool(self.session.strip()) and bool(self.signature.strip())


def build_sweep_owner_key(*, session: str | None) -> str | None:
    """
    Derive opaque ownership key from a session credential.

    Args:
        session: Raw session credential or `None` for guests.
    Returns:
        str | None: Lowercase SHA-256 hex digest, or `None` for guests.
    Assumptions:
        Ownership is a privacy partition, not an authentication boundary.
    Raises:
        None.
    Side Effects:
        None.
    """
    if session is None:
        return None
    normalized = session.strip()
    if not normalized:
        return None
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class SubmitSweepCommand:
    """
    Validated sweep submission before combination expansion.

    Exactly one of `combinations` (pre-expanded, taken verbatim) and `base_options`
    (expanded server-side with optional `ranges`) is set.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
      - src/optisweep/contexts/sweeps/application/services/parameter_space_v1.py
      - apps/api/dto/sweeps.py
    """

    indicator_id: str
    symbols: tuple[str, ...]
    timeframes: tuple[str, ...]
    credentials: SweepProviderCredentials | None
    combinations: tuple[Mapping[str, SweepScalar], ...] | None = None
    base_options: Mapping[str, SweepScalar] | None = None
    ranges: Mapping[str, SweepParameterRange] | None = None
    date_from: str | None = None
    date_to: str | None = None
    max_parallel_connections: int | None = None
    account_type: str | None = None

    def __post_init__(self) -> None:
        """
        Validate submission shape and normalize identity fields.

        Args:
            None.
        Returns:
            None.
        Assumptions:
            Credentials completeness is checked by the submit use-case, not here.
        Raises:
            SweepValidationError: If one field violates the submission contract.
        Side Effects:
            Strips identity strings and freezes collections.
        """
        errors: list[dict[str, str]] = []
        object.__setattr__(self, "indicator_id", self.indicator_id.strip())
        if not self.indicator_id:
            errors.append(_error_item(path="indicatorId", message="indicatorId must be non-empty"))

        symbols = tuple(item.strip() for item in self.symbols)
        object.__setattr__(self, "symbols", symbols)
        if len(symbols) == 0 or any(not item for item in symbols):
            errors.append(_error_item(path="symbols", message="symbols must be non-empty strings"))

        timeframes = tuple(item.strip() for item in self.timeframes)
        object.__setattr__(self, "timeframes", timeframes)
        if len(timeframes) == 0 or any(not item for item in timeframes):
            errors.append(
                _error_item(path="timeframes", message="timeframes must be non-empty strings")
            )

        if (self.combinations is None) == (self.base_options is None):
            errors.append(
                _error_item(
                    path="combinations",
                    message="exactly one of combinations or baseOptions must be provided",
                )
            )
        if self.combinations is not None:
            if len(self.combinations) == 0:
                errors.append(
                    _error_item(path="combinations", message="combinations must be non-empty")
                )
            object.__setattr__(
                self,
                "combinations",
                tuple(MappingProxyType(dict(item)) for item in self.combinations),
            )
            if self.ranges:
                errors.append(
                    _error_item(
                        path="ranges",
                        message="ranges require baseOptions and cannot be combined "
                        "with combinations",
                    )
                )
        if self.base_options is not None:
            object.__setattr__(self, "base_options", MappingProxyType(dict(self.base_options)))
        if self.ranges is not None:
            object.__setattr__(self, "ranges", MappingProxyType(dict(self.ranges)))

        if self.max_parallel_connections is not None and self.max_parallel_connections <= 0:
            errors.append(
                _error_item(
                    path="maxParallelConnections",
                    message="maxParallelConnections must be > 0",
                )
            )

        try:
            resolve_evaluation_window(
                date_from=self.date_from,
                date_to=self.date_to,
                now=datetime.now(timezone.utc),
            )
        except SweepValidationError as error:
            errors.extend(error.errors)

        if errors:
            raise SweepValidationError("Invalid backtest submission", errors=errors)


@dataclass(frozen=True, slots=True)
class RetrySweepCellCommand:
    """
    One out-of-band re-evaluation request for a single `(symbol, timeframe, options)` cell.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/retry_sweep_cell_v1.py
      - apps/api/dto/sweeps.py
    """

    job_id: UUID
    symbol: str
    timeframe: str
    options: Mapping[str, SweepScalar]
    credentials: SweepProviderCredentials | None
    indicator_id: str | None = None
    date_from: str | None = None
    date_to: str | None = None

    def __post_init__(self) -> None:
        errors: list[dict[str, str]] = []
        object.__setattr__(self, "symbol", self.symbol.strip())
        object.__setattr__(self, "timeframe", self.timeframe.strip())
        if not self.symbol:
            errors.append(_error_item(path="symbol", message="symbol must be non-empty"))
        if not self.timeframe:
            errors.append(_error_item(path="timeframe", message="timeframe must be non-empty"))
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))
        if errors:
            raise SweepValidationError("Invalid retry request", errors=errors)


@dataclass(frozen=True, slots=True)
class EvaluationWindow:
    """
    Inclusive evaluation window in UTC epoch seconds, warm-up buffer already applied.

    Related:
      - src/optisweep/contexts/sweeps/application/ports/backtest_provider.py
      - src/optisweep/contexts/sweeps/adapters/outbound/provider/http_backtest_provider.py
    """

    start_ts: int
    end_ts: int

    def __post_init__(self) -> None:
        if self.start_ts >= self.end_ts:
            raise SweepValidationError(
                "Evaluation window start must be before end",
                errors=[_error_item(path="dateFrom", message="dateFrom must be before dateTo")],
            )


def resolve_evaluation_window(
    *,
    date_from: str | None,
    date_to: str | None,
    now: datetime,
) -> EvaluationWindow:
    """
    Resolve provider evaluation window from optional ISO dates.

    Args:
        date_from: Optional ISO date/datetime for window start.
        date_to: Optional ISO date/datetime for window end.
        now: Current UTC timestamp used for the default window.
    Returns:
        EvaluationWindow: Window with one-day warm-up buffer before start.
    Assumptions:
        Explicit dates apply only when both are provided; otherwise the last 365 days
        ending at `now` are used. Naive dates are interpreted as UTC.
    Raises:
        SweepValidationError: If one date is malformed or start is not before end.
    Side Effects:
        None.
    """
    if date_from and date_to:
        start = _parse_iso_date(raw=date_from, path="dateFrom")
        end = _parse_iso_date(raw=date_to, path="dateTo")
    else:
        end = now
        start = now - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    start_ts = int(start.timestamp())
    end_ts = int(end.timestamp())
    if start_ts > end_ts:
        raise SweepValidationError(
            "Evaluation window start must be before end",
            errors=[_error_item(path="dateFrom", message="dateFrom must not be after dateTo")],
        )
    return EvaluationWindow(start_ts=start_ts - WARMUP_BUFFER_SECONDS, end_ts=end_ts)


def _parse_iso_date(*, raw: str, path: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError as error:
        raise SweepValidationError(
            f"{path} must be an ISO date",
            errors=[_error_item(path=path, message=f"{path} must be an ISO date")],
        ) from error
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _error_item(*, path: str, message: str) -> dict[str, str]:
    return {"path": path, "code": "validation_error", "message": message}
