from .sweep_events import (
    SWEEP_CANCELLED_MESSAGE,
    SweepEvent,
    SweepEventKind,
    cell_state_event,
    complete_event,
    error_event,
    progress_event,
    rate_limit_event,
    result_event,
    retrying_event,
    saved_event,
    status_event,
)
from .sweep_request import (
    DEFAULT_LOOKBACK_DAYS,
    WARMUP_BUFFER_SECONDS,
    EvaluationWindow,
    RetrySweepCellCommand,
    SubmitSweepCommand,
    SweepParameterRange,
    SweepProviderCredentials,
    build_sweep_owner_key,
    resolve_evaluation_window,
)

__all__ = [
    "DEFAULT_LOOKBACK_DAYS",
    "EvaluationWindow",
    "RetrySweepCellCommand",
    "SWEEP_CANCELLED_MESSAGE",
    "SubmitSweepCommand",
    "SweepEvent",
    "SweepEventKind",
    "SweepParameterRange",
    "SweepProviderCredentials",
    "WARMUP_BUFFER_SECONDS",
    "build_sweep_owner_key",
    "cell_state_event",
    "complete_event",
    "error_event",
    "progress_event",
    "rate_limit_event",
    "resolve_evaluation_window",
    "result_event",
    "retrying_event",
    "saved_event",
    "status_event",
]
