"""
HTTP rendering of OptisweepError and request-body validation failures.

Related:
  - src/optisweep/platform/errors/optisweep_error.py
  - src/optisweep/contexts/sweeps/application/use_cases/errors.py
  - apps/api/routes/sweeps.py
"""

from __future__ import annotations

from typing import Any, Mapping, cast

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from optisweep.platform.errors import OptisweepError


def register_api_error_handlers(*, app: FastAPI) -> None:
    """
    Install the sweep API exception handlers on one application.

    Args:
        app: FastAPI application instance.
    Returns:
        None.
    Assumptions:
        Called once from `create_app`.
    Raises:
        ValueError: If `app` is missing.
    Side Effects:
        Mutates the FastAPI exception-handler registry.
    """
    if app is None:  # type: ignore[truthy-bool]
        raise ValueError("register_api_error_handlers requires app")

    app.add_exception_handler(OptisweepError, optisweep_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)


def optisweep_error_handler(_request: Request, error: Exception) -> JSONResponse:
    optisweep_error = cast(OptisweepError, error)
    return JSONResponse(
        status_code=optisweep_error.http_status,
        content=optisweep_error.to_payload(),
    )


def request_validation_error_handler(_request: Request, error: Exception) -> JSONResponse:
    """
    Render a rejected request body as a `validation_error` with sorted items.

    Args:
        _request: Starlette request object (unused).
        error: FastAPI validation exception.
    Returns:
        JSONResponse: HTTP 422 with `details.errors` sorted by path, code and message.
    Assumptions:
        Pydantic `missing` errors are reported with code `required`.
    Raises:
        None.
    Side Effects:
        None.
    """
    items = sorted(
        (_validation_item(raw) for raw in cast(RequestValidationError, error).errors()),
        key=lambda item: (item["path"], item["code"], item["message"]),
    )
    rejected = OptisweepError(
        code="validation_error",
        message="Validation failed",
        details={"errors": items},
    )
    return optisweep_error_handler(_request, rejected)


def _validation_item(raw: Mapping[str, Any]) -> dict[str, str]:
    code = str(raw.get("type") or "validation_error")
    path = ".".join(str(part) for part in raw.get("loc") or ())
    return {
        "path": path or "unknown",
        "code": "required" if code == "missing" else code,
        "message": str(raw.get("msg", "Validation error")),
    }
