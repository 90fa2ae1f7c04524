"""
Platform error raised by use cases and rendered by the API as `{"error": {...}}`.

Related:
  - apps/api/common/errors.py
  - src/optisweep/contexts/sweeps/application/use_cases/errors.py
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

ERROR_HTTP_STATUS: Mapping[str, int] = {
    "validation_error": 422,
    "unauthorized": 401,
    "not_found": 404,
    "conflict": 409,
    "provider_error": 502,
    "unexpected_error": 500,
}


@dataclass(frozen=True, slots=True)
class OptisweepError(Exception):
    """
    Machine-readable sweep failure with a fixed HTTP status per code.

    Parameters:
    - code: one of `ERROR_HTTP_STATUS` keys; any other token renders as HTTP 500.
    - message: human-readable text shown to the caller.
    - details: flat extras such as `job_id`, `key`, `count`, `limit` or validation `errors`.

    Assumptions/Invariants:
    - `details` is stored as a plain dict ordered by key.
    - Detail values are JSON scalars or lists; validation items become plain dicts.
    """

    code: str
    message: str
    details: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        code = self.code.strip()
        message = self.message.strip()
        if not code:
            raise ValueError("OptisweepError.code must be non-empty")
        if not message:
            raise ValueError("OptisweepError.message must be non-empty")
        if self.details is not None and not isinstance(self.details, Mapping):
            raise TypeError("OptisweepError.details must be a mapping when provided")

        object.__setattr__(self, "code", code)
        object.__setattr__(self, "message", message)
        if self.details is not None:
            plain = {str(key): _plain_detail(self.details[key]) for key in sorted(self.details)}
            object.__setattr__(self, "details", plain)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @property
    def http_status(self) -> int:
        return ERROR_HTTP_STATUS.get(self.code, 500)

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": dict(self.details or {}),
            }
        }


def _plain_detail(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [dict(item) if isinstance(item, Mapping) else _plain_detail(item) for item in value]
    return str(value)
