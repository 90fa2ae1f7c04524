from .sweep_errors import (
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
    "SweepCredentialsError",
    "SweepDomainError",
    "SweepJobNotFoundError",
    "SweepJobTransitionError",
    "SweepProviderError",
    "SweepStorageError",
    "SweepValidationError",
]
