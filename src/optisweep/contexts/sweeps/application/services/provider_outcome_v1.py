from __future__ import annotations

import json
from typing import Any, Mapping

from optisweep.contexts.sweeps.domain.entities import SweepCellSummary
from optisweep.contexts.sweeps.domain.errors import SweepProviderError

_DIAGNOSTIC_MARKER = "Command info:"
_BAR_MAGNIFIER_MARKER = "Bar Magnifier feature is only available to Premium users"
_BAR_MAGNIFIER_HINT = ' (Hint: Disable "use_bar_magnifier" option in your strategy settings)'
_RATE_LIMIT_MARKERS = ("429", "rate limit", "timeout")
_RATE_LIMIT_HINT = " (Hint: provider rate limit reached, wait a moment and retry this test)"


def summarize_provider_report(report: Mapping[str, Any] | None) -> SweepCellSummary | None:
    """
    Reduce raw provider report into the fixed summary metrics schema.

    Args:
        report: Raw provider report.
    Returns:
        SweepCellSummary | None: Summary, or `None` when the report has no `performance`.
    Assumptions:
        Fractions (`percentProfitable`, `maxStrategyDrawDownPercent`) are scaled to
        percentages; missing or non-numeric values become `None`.
    Raises:
        None.
    Side Effects:
        None.
    """
    if not report:
        return None
    performance = report.get("performance")
    if not isinstance(performance, Mapping) or not performance:
        return None
    overall = performance.get("all")
    if not isinstance(overall, Mapping):
        overall = {}
    return SweepCellSummary(
        net_profit=_number(overall.get("netProfit")),
        total_closed_trades=_number(overall.get("totalTrades")),
        percent_profitable=_scaled(overall.get("percentProfitable")),
        profit_factor=_number(overall.get("profitFactor")),
        max_drawdown=_scaled(performance.get("maxStrategyDrawDownPercent")),
        avg_trade=_number(overall.get("avgTrade")),
    )


def sanitize_provider_error(error: object) -> SweepProviderError:
    """
    Convert any provider failure into a sanitized, user-facing provider error.

    Args:
        error: Raised exception, error string or arbitrary error payload.
    Returns:
        SweepProviderError: Error with cleaned message and rate-limit flag.
    Assumptions:
        Rate-limit detection is content based and case-insensitive.
    Raises:
        None.
    Side Effects:
        None.
    """
    if isinstance(error, SweepProviderError):
        return error
    message = _render_error(error)
    if _DIAGNOSTIC_MARKER in message:
        message = message.split(_DIAGNOSTIC_MARKER, 1)[0].strip()
    if not message:
        message = "Unknown error"
    if _BAR_MAGNIFIER_MARKER in message:
        message += _BAR_MAGNIFIER_HINT

    lowered = message.lower()
    rate_limited = any(marker in lowered for marker in _RATE_LIMIT_MARKERS)
    if rate_limited:
        message += _RATE_LIMIT_HINT
    return SweepProviderError(message, rate_limited=rate_limited)


def _render_error(error: object) -> str:
    if isinstance(error, BaseException):
        text = str(error).strip()
        return text or type(error).__name__
    if isinstance(error, str):
        return error.strip()
    return json.dumps(error, sort_keys=True, default=str)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _scaled(value: Any) -> float | None:
    number = _number(value)
    if number is None:
        return None
    return number * 100
