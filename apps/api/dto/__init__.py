from .sweeps import (
    SweepRangeRequest,
    SweepRetryRequest,
    SweepSubmitRequest,
    build_retry_sweep_cell_command,
    build_submit_sweep_command,
    build_sweep_job_response,
    build_sweep_jobs_list_response,
    build_sweep_retry_response,
    build_sweep_size_response,
)

__all__ = [
    "SweepRangeRequest",
    "SweepRetryRequest",
    "SweepSubmitRequest",
    "build_retry_sweep_cell_command",
    "build_submit_sweep_command",
    "build_sweep_job_response",
    "build_sweep_jobs_list_response",
    "build_sweep_retry_response",
    "build_sweep_size_response",
]
