from .sweep_job import (
    SweepCellKey,
    SweepCellSummary,
    SweepJob,
    SweepJobStatus,
    SweepRequestSnapshot,
    SweepScalar,
    SweepTestResult,
    build_sweep_cell_key,
    is_terminal_sweep_job_status,
)

__all__ = [
    "SweepCellKey",
    "SweepCellSummary",
    "SweepJob",
    "SweepJobStatus",
    "SweepRequestSnapshot",
    "SweepScalar",
    "SweepTestResult",
    "build_sweep_cell_key",
    "is_terminal_sweep_job_status",
]
