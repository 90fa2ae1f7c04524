from .dto import (
    RetrySweepCellCommand,
    SubmitSweepCommand,
    SweepEvent,
    SweepParameterRange,
    SweepProviderCredentials,
)
from .ports import (
    BacktestProvider,
    SweepEventPublisher,
    SweepJobArchive,
    SweepJobDispatcher,
    SweepJobRegistry,
)
from .services import (
    AsyncioSweepJobDispatcher,
    SweepBroadcastHub,
    SweepJobExecutor,
    SweepJobLookup,
    build_sweep_combinations,
)
from .use_cases import (
    CancelSweepJobUseCase,
    GetSweepJobUseCase,
    ListSweepJobsUseCase,
    RetrySweepCellUseCase,
    SubmitSweepJobUseCase,
    SweepResultsExportUseCase,
    map_sweep_exception,
)

__all__ = [
    "AsyncioSweepJobDispatcher",
    "BacktestProvider",
    "CancelSweepJobUseCase",
    "GetSweepJobUseCase",
    "ListSweepJobsUseCase",
    "RetrySweepCellCommand",
    "RetrySweepCellUseCase",
    "SubmitSweepCommand",
    "SubmitSweepJobUseCase",
    "SweepBroadcastHub",
    "SweepEvent",
    "SweepEventPublisher",
    "SweepJobArchive",
    "SweepJobDispatcher",
    "SweepJobExecutor",
    "SweepJobLookup",
    "SweepJobRegistry",
    "SweepParameterRange",
    "SweepProviderCredentials",
    "SweepResultsExportUseCase",
    "build_sweep_combinations",
    "map_sweep_exception",
]
