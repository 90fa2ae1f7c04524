from .entities import (
    SweepCellSummary,
    SweepJob,
    SweepJobStatus,
    SweepRequestSnapshot,
    SweepScalar,
    SweepTestResult,
    build_sweep_cell_key,
    is_terminal_sweep_job_status,
)
from .errors import (
    InvalidRangeError,
    ParameterRangeError,
    RangeTooLargeError,
    SweepCredentialsError,
    SweepDomainError,
    SweepJobNotFoundError,
    SweepJobTransitionError,
    SweepProviderError,
    SweepStorageError,
    SweepValidationError,
)

__all__ = [
    "InvalidRangeError",
    "ParameterRangeError",
    "RangeTooLargeError",
    "SweepCellSummary",
    "SweepCredentialsError",
    "SweepDomainError",
    "SweepJob",
    "SweepJobNotFoundError",
    "SweepJobStatus",
    "SweepJobTransitionError",
    "SweepProviderError",
    "SweepRequestSnapshot",
    "SweepScalar",
    "SweepStorageError",
    "SweepTestResult",
    "SweepValidationError",
    "build_sweep_cell_key",
    "is_terminal_sweep_job_status",
]
