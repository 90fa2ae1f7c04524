from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID

from optisweep.contexts.sweeps.domain.errors import (
    ParameterRangeError,
    RangeTooLargeError,
    SweepCredentialsError,
    SweepJobNotFoundError,
    SweepJobTransitionError,
    SweepProviderError,
    SweepStorageError,
    SweepValidationError,
)
from optisweep.platform.errors import OptisweepError


def validation_error(
    *,
    message: str,
    errors: Sequence[Mapping[str, str]] | None = None,
    details: Mapping[str, Any] | None = None,
) -> OptisweepError:
    """
    Build canonical `validation_error` OptisweepError with deterministic item ordering.

    Related:
      - src/optisweep/contexts/sweeps/domain/errors/sweep_errors.py
      - apps/api/common/errors.py
      - src/optisweep/platform/errors/optisweep_error.py

    Args:
        message: Human-readable validation failure message.
        errors: Optional validation items list.
        details: Optional extra structured details.
    Returns:
        OptisweepError: Canonical deterministic validation error.
    Assumptions:
        Validation item entries contain `path`, `code`, and `message`.
    Raises:
        None.
    Side Effects:
        None.
    """
    payload: dict[str, Any] = dict(details or {})
    if errors is not None:
        payload["errors"] = _sorted_validation_items(items=errors)
    return OptisweepError(code="validation_error", message=message, details=payload)


def sweep_job_not_found(*, job_id: UUID) -> OptisweepError:
    """
    Build deterministic not-found API error for job id lookups.

    Args:
        job_id: Requested job identifier.
    Returns:
        OptisweepError: Canonical `not_found` payload.
    Assumptions:
        Missing and foreign-owner jobs are intentionally not distinguished.
    Raises:
        None.
    Side Effects:
        None.
    """
    return OptisweepError(
        code="not_found",
        message="Job not found",
        details={"job_id": str(job_id)},
    )


def sweep_unauthorized(*, message: str) -> OptisweepError:
    return OptisweepError(code="unauthorized", message=message)


def map_sweep_exception(*, error: Exception) -> OptisweepError:
    """
    Map known sweep exceptions to canonical OptisweepError contract.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
      - src/optisweep/contexts/sweeps/domain/errors/sweep_errors.py
      - apps/api/routes/sweeps.py

    Args:
        error: Caught exception.
    Returns:
        OptisweepError: Canonical mapped error.
    Assumptions:
        Unknown exceptions are mapped to generic `unexpected_error`.
    Raises:
        None.
    Side Effects:
        None.
    """
    if isinstance(error, OptisweepError):
        return error

    if isinstance(error, SweepValidationError):
        normalized_errors = error.errors if len(error.errors) > 0 else None
        return validation_error(message=str(error), errors=normalized_errors)

    if isinstance(error, RangeTooLargeError):
        return validation_error(
            message=str(error),
            details={"key": error.key, "count": error.count, "limit": error.limit},
        )

    if isinstance(error, ParameterRangeError):
        return validation_error(message=str(error), details={"key": error.key})

    if isinstance(error, SweepJobNotFoundError):
        return sweep_job_not_found(job_id=error.job_id)

    if isinstance(error, SweepCredentialsError):
        return sweep_unauthorized(message=str(error))

    if isinstance(error, SweepProviderError):
        return OptisweepError(
            code="provider_error",
            message=error.message,
            details={"rate_limited": error.rate_limited},
        )

    if isinstance(error, SweepStorageError):
        return OptisweepError(
            code="unexpected_error",
            message="Job storage operation failed",
            details={"reason": str(error)},
        )

    if isinstance(error, SweepJobTransitionError):
        return OptisweepError(code="conflict", message=str(error))

    if isinstance(error, ValueError):
        return validation_error(message=str(error))

    return OptisweepError(
        code="unexpected_error",
        message="Unexpected sweep operation error",
        details={"reason": str(error)},
    )


def _sorted_validation_items(*, items: Sequence[Mapping[str, str]]) -> list[dict[str, str]]:
    normalized_items: list[dict[str, str]] = []
    for item in items:
        normalized_items.append(
            {
                "path": str(item.get("path", "unknown")),
                "code": str(item.get("code", "validation_error")),
                "message": str(item.get("message", "Validation error")),
            }
        )
    return sorted(
        normalized_items,
        key=lambda row: (row["path"], row["code"], row["message"]),
    )
