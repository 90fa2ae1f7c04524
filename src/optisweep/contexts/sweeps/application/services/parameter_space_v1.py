from __future__ import annotations

import math
from typing import Mapping

from optisweep.contexts.sweeps.application.dto import SweepParameterRange
from optisweep.contexts.sweeps.domain.entities import SweepScalar
from optisweep.contexts.sweeps.domain.errors import InvalidRangeError, RangeTooLargeError

MAX_VALUES_PER_KEY_DEFAULT = 1000
_SIGNIFICANT_DIGITS = 10
_STEP_TOLERANCE = 1e-9


def build_sweep_combinations(
    *,
    base_options: Mapping[str, SweepScalar],
    ranges: Mapping[str, SweepParameterRange] | None = None,
    max_values_per_key: int = MAX_VALUES_PER_KEY_DEFAULT,
) -> tuple[dict[str, SweepScalar], ...]:
    """
    Expand base option values and active ranges into the ordered combination list.

    Args:
        base_options: Parameter defaults in declaration order.
        ranges: Optional range declarations keyed by parameter name.
        max_values_per_key: Per-key expansion limit.
    Returns:
        tuple[dict[str, SweepScalar], ...]: Cartesian product built key-by-key so that the
        last declared key varies fastest.
    Assumptions:
        Limit is checked per key, never across the full product. Inactive ranges are
        ignored even for unknown keys.
    Raises:
        InvalidRangeError: If one active range is malformed or targets an unknown or string
            parameter.
        RangeTooLargeError: If one key expands to more than `max_values_per_key` values.
    Side Effects:
        None.
    """
    if max_values_per_key <= 0:
        raise ValueError("max_values_per_key must be > 0")
    active_ranges = {
        key: declared for key, declared in (ranges or {}).items() if declared.active
    }
    for key in active_ranges:
        if key not in base_options:
            raise InvalidRangeError(f"Range declared for unknown parameter {key!r}", key=key)

    combinations: list[dict[str, SweepScalar]] = [{}]
    for key, default in base_options.items():
        declared = active_ranges.get(key)
        values = (
            (default,)
            if declared is None
            else _expand_key(key=key, default=default, declared=declared, limit=max_values_per_key)
        )
        combinations = [{**prefix, key: value} for prefix in combinations for value in values]
    return tuple(combinations)


def _expand_key(
    *,
    key: str,
    default: SweepScalar,
    declared: SweepParameterRange,
    limit: int,
) -> tuple[SweepScalar, ...]:
    """
    Materialize value set for one parameter with an active range.

    Args:
        key: Parameter key.
        default: Base value deciding the parameter kind.
        declared: Active range declaration.
        limit: Per-key expansion limit.
    Returns:
        tuple[SweepScalar, ...]: Ordered value set.
    Assumptions:
        Boolean parameters always expand to `(True, False)`.
    Raises:
        InvalidRangeError: If the range is malformed for the parameter kind.
        RangeTooLargeError: If the value count exceeds the limit.
    Side Effects:
        None.
    """
    if isinstance(default, bool):
        return (True, False)
    if not isinstance(default, int | float):
        raise InvalidRangeError(f"Parameter {key!r} is not numeric and cannot be ranged", key=key)

    minimum, maximum, step = declared.minimum, declared.maximum, declared.step
    if minimum is None or maximum is None or step is None:
        raise InvalidRangeError(f"Range for parameter {key!r} requires min, max and step", key=key)
    if any(isinstance(item, bool) for item in (minimum, maximum, step)):
        raise InvalidRangeError(f"Range for parameter {key!r} must be numeric", key=key)
    bounds = (minimum, maximum, step)
    if any(isinstance(item, float) and not math.isfinite(item) for item in bounds):
        raise InvalidRangeError(f"Range for parameter {key!r} must be finite", key=key)
    if step <= 0:
        raise InvalidRangeError(f"Range step for parameter {key!r} must be > 0", key=key)
    if maximum < minimum:
        raise InvalidRangeError(f"Range max for parameter {key!r} must be >= min", key=key)

    if isinstance(minimum, int) and isinstance(maximum, int) and isinstance(step, int):
        count = (maximum - minimum) // step + 1
    else:
        try:
            span = (maximum - minimum) / step
        except OverflowError:
            span = math.inf
        if not math.isfinite(span):
            raise RangeTooLargeError(key=key, count=None, limit=limit)
        count = math.floor(span + _STEP_TOLERANCE) + 1
    if count > limit:
        raise RangeTooLargeError(key=key, count=count, limit=limit)

    if isinstance(minimum, int) and isinstance(step, int):
        return tuple(minimum + index * step for index in range(count))
    return tuple(_round_significant(minimum + index * step) for index in range(count))


def _round_significant(value: float) -> float:
    return float(f"{value:.{_SIGNIFICANT_DIGITS}g}")
