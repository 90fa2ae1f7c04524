from .backtest_provider import (
    BacktestProvider,
    BacktestProviderClient,
    BacktestProviderPairSession,
)
from .sweep_event_sink import SweepEventPublisher, SweepEventSink
from .sweep_job_archive import SweepJobArchive, SweepJobArchiveEntry
from .sweep_job_dispatcher import SweepJobDispatcher
from .sweep_job_registry import SweepJobRegistry

__all__ = [
    "BacktestProvider",
    "BacktestProviderClient",
    "BacktestProviderPairSession",
    "SweepEventPublisher",
    "SweepEventSink",
    "SweepJobArchive",
    "SweepJobArchiveEntry",
    "SweepJobDispatcher",
    "SweepJobRegistry",
]
