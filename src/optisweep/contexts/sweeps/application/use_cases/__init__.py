from .errors import map_sweep_exception, sweep_job_not_found, validation_error
from .retry_sweep_cell_v1 import RetrySweepCellOutcome, RetrySweepCellUseCase
from .sweep_jobs_api_v1 import (
    MISSING_CREDENTIALS_MESSAGE,
    CancelSweepJobUseCase,
    GetSweepJobUseCase,
    ListSweepJobsUseCase,
    SubmitSweepJobUseCase,
    SweepJobsApiHooks,
)
from .sweep_results_export_v1 import (
    STREAM_BATCH_SIZE_DEFAULT,
    SweepExportFile,
    SweepExportSizeEstimate,
    SweepResultsExportUseCase,
    SweepStreamFrame,
)

__all__ = [
    "CancelSweepJobUseCase",
    "GetSweepJobUseCase",
    "ListSweepJobsUseCase",
    "MISSING_CREDENTIALS_MESSAGE",
    "RetrySweepCellOutcome",
    "RetrySweepCellUseCase",
    "STREAM_BATCH_SIZE_DEFAULT",
    "SubmitSweepJobUseCase",
    "SweepExportFile",
    "SweepExportSizeEstimate",
    "SweepJobsApiHooks",
    "SweepResultsExportUseCase",
    "SweepStreamFrame",
    "map_sweep_exception",
    "sweep_job_not_found",
    "validation_error",
]
