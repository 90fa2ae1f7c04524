from __future__ import annotations

from typing import Mapping, Sequence
from uuid import UUID


class SweepDomainError(ValueError):
    """
    Base deterministic domain error for the sweeps bounded context.

    Related:
      - src/optisweep/contexts/sweeps/application/use_cases/errors.py
      - src/optisweep/platform/errors/optisweep_error.py
      - apps/api/common/errors.py
    """


class SweepValidationError(SweepDomainError):
    """
    Raised when a sweep submission violates the request contract.

    Related:
      - src/optisweep/contexts/sweeps/application/dto/sweep_request.py
      - src/optisweep/contexts/sweeps/application/use_cases/errors.py
      - apps/api/dto/sweeps.py
    """

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[Mapping[str, str]] | None = None,
    ) -> None:
        """
        Build validation error with optional deterministic item payload.

        Args:
            message: Human-readable validation failure description.
            errors: Optional detailed validation items (`path`, `code`, `message`).
        Returns:
            None.
        Assumptions:
            Missing item fields are normalized to deterministic fallback values.
        Raises:
            None.
        Side Effects:
            Stores normalized immutable validation items for API mapping layer.
        """
        super().__init__(message)
        normalized_errors: list[dict[str, str]] = []
        if errors is not None:
            for item in errors:
                normalized_errors.append(
                    {
                        "path": str(item.get("path", "unknown")),
                        "code": str(item.get("code", "validation_error")),
                        "message": str(item.get("message", "Validation error")),
                    }
                )
        self._errors = tuple(normalized_errors)

    @property
    def errors(self) -> tuple[Mapping[str, str], ...]:
        """
        Return immutable normalized validation details.

        Args:
            None.
        Returns:
            tuple[Mapping[str, str], ...]: Stable normalized validation details.
        Assumptions:
            Items were normalized during initialization.
        Raises:
            None.
        Side Effects:
            None.
        """
        return self._errors


class ParameterRangeError(SweepDomainError):
    """
    Base error for parameter range expansion failures raised before any job exists.

    Related:
      - src/optisweep/contexts/sweeps/application/services/parameter_space_v1.py
      - src/optisweep/contexts/sweeps/application/use_cases/errors.py
    """

    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(message)
        self._key = key

    @property
    def key(self) -> str:
        """
        Return parameter key whose range failed validation.

        Args:
            None.
        Returns:
            str: Parameter key.
        Assumptions:
            Key is the raw key from `baseOptions`/`ranges`.
        Raises:
            None.
        Side Effects:
            None.
        """
        return self._key


class InvalidRangeError(ParameterRangeError):
    """
    Raised when one range declaration is malformed (`step <= 0`, `max < min`, wrong type).
    """


class RangeTooLargeError(ParameterRangeError):
    """
    Raised when one parameter key expands to more values than the per-key limit.
    """

    def __init__(self, *, key: str, count: int | None, limit: int) -> None:
        """
        Build range-size error with deterministic count/limit attributes.

        Args:
            key: Parameter key whose expansion is too large.
            count: Expanded value count for the key, `None` when it is not representable.
            limit: Configured per-key limit.
        Returns:
            None.
        Assumptions:
            The limit is checked per key, never across the full product.
        Raises:
            None.
        Side Effects:
            None.
        """
        amount = f"more than {limit}" if count is None else str(count)
        super().__init__(
            f"Range for parameter {key!r} expands to {amount} values (limit {limit})",
            key=key,
        )
        self.count = count
        self.limit = limit


class SweepJobTransitionError(SweepDomainError):
    """
    Raised when one job lifecycle transition or result write violates the state machine.

    Related:
      - src/optisweep/contexts/sweeps/domain/entities/sweep_job.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
    """


class SweepJobNotFoundError(SweepDomainError):
    """
    Raised when a job id is unknown or hidden by the ownership filter.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_job_lookup.py
      - src/optisweep/contexts/sweeps/application/use_cases/errors.py
    """

    def __init__(self, *, job_id: UUID) -> None:
        super().__init__("Job not found")
        self._job_id = job_id

    @property
    def job_id(self) -> UUID:
        """
        Return requested job identifier.

        Args:
            None.
        Returns:
            UUID: Requested job id.
        Assumptions:
            Foreign-owner jobs are reported with the same error as missing jobs.
        Raises:
            None.
        Side Effects:
            None.
        """
        return self._job_id


class SweepCredentialsError(SweepDomainError):
    """
    Raised when provider credentials required for evaluation are missing.
    """


class SweepStorageError(SweepDomainError):
    """
    Raised when the job archive cannot be read or written.

    Related:
      - src/optisweep/contexts/sweeps/adapters/outbound/persistence/files/
        file_sweep_job_archive.py
    """


class SweepProviderError(SweepDomainError):
    """
    Raised for one failed provider evaluation (including timeouts) after sanitization.

    Related:
      - src/optisweep/contexts/sweeps/application/services/provider_outcome_v1.py
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - src/optisweep/contexts/sweeps/application/use_cases/retry_sweep_cell_v1.py
    """

    def __init__(self, message: str, *, rate_limited: bool = False) -> None:
        """
        Build provider error carrying the sanitized message and rate-limit tag.

        Args:
            message: Sanitized, user-facing provider error text.
            rate_limited: Whether the error was recognized as rate-limit flavoured.
        Returns:
            None.
        Assumptions:
            Message is already stripped of provider diagnostic suffixes.
        Raises:
            None.
        Side Effects:
            None.
        """
        super().__init__(message)
        self.message = message
        self.rate_limited = rate_limited
