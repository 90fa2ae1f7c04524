from .broadcast_hub import QueueSweepEventSink, SweepBroadcastHub, SweepBroadcastHubHooks
from .parameter_space_v1 import MAX_VALUES_PER_KEY_DEFAULT, build_sweep_combinations
from .provider_outcome_v1 import sanitize_provider_error, summarize_provider_report
from .sweep_executor_v1 import SHUTDOWN_INTERRUPTED_MESSAGE, SweepExecutorHooks, SweepJobExecutor
from .sweep_job_dispatcher import AsyncioSweepJobDispatcher
from .sweep_job_lookup import SweepJobListItem, SweepJobLookup

__all__ = [
    "AsyncioSweepJobDispatcher",
    "MAX_VALUES_PER_KEY_DEFAULT",
    "QueueSweepEventSink",
    "SHUTDOWN_INTERRUPTED_MESSAGE",
    "SweepBroadcastHub",
    "SweepBroadcastHubHooks",
    "SweepExecutorHooks",
    "SweepJobExecutor",
    "SweepJobListItem",
    "SweepJobLookup",
    "build_sweep_combinations",
    "sanitize_provider_error",
    "summarize_provider_report",
]
