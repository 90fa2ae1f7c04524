from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import pytest
from pydantic import ValidationError

from apps.api.dto import (
    SweepRetryRequest,
    SweepSubmitRequest,
    build_retry_sweep_cell_command,
    build_submit_sweep_command,
    build_sweep_jobs_list_response,
    build_sweep_retry_response,
)
from optisweep.contexts.sweeps.application.services import SweepJobListItem
from optisweep.contexts.sweeps.application.use_cases import RetrySweepCellOutcome
from optisweep.contexts.sweeps.domain.entities import SweepTestResult


def test_submit_request_maps_camel_case_ranges_to_command() -> None:
    """Ensure `min`/`max` aliases and option scalar types survive parsing."""
    request = SweepSubmitRequest.model_validate(
        {
            "indicatorId": "USER;abc",
            "symbols": ["BINANCE:BTCUSDT"],
            "timeframes": ["60", "240"],
            "baseOptions": {"length": 14, "mult": 1.5, "source": "close", "useAtr": True},
            "ranges": {"mult": {"active": True, "min": 1.0, "max": 2.0, "step": 0.5}},
            "session": "sess",
            "signature": "sig",
            "maxParallelConnections": 2,
        }
    )

    command = build_submit_sweep_command(request=request)

    assert command.timeframes == ("60", "240")
    assert command.base_options == {"length": 14, "mult": 1.5, "source": "close", "useAtr": True}
    assert command.ranges is not None
    assert command.ranges["mult"].minimum == 1.0
    assert command.ranges["mult"].maximum == 2.0
    assert command.credentials is not None
    assert command.max_parallel_connections == 2


def test_submit_request_without_signature_has_no_credentials() -> None:
    """Ensure partial credentials are dropped so the use-case can reject them."""
    request = SweepSubmitRequest.model_validate(
        {
            "indicatorId": "USER;abc",
            "symbols": ["BINANCE:BTCUSDT"],
            "timeframes": ["60"],
            "combinations": [{"length": 14}],
            "session": "sess",
        }
    )

    assert build_submit_sweep_command(request=request).credentials is None


def test_submit_request_rejects_unknown_fields() -> None:
    """Ensure the submission envelope is strict."""
    with pytest.raises(ValidationError):
        SweepSubmitRequest.model_validate(
            {"indicatorId": "x", "symbols": [], "timeframes": [], "unexpected": 1}
        )


def test_retry_request_maps_to_command() -> None:
    """Ensure retry envelopes carry job id, cell identity and overrides."""
    request = SweepRetryRequest.model_validate(
        {
            "jobId": "00000000-0000-4000-8000-000000000001",
            "symbol": "BINANCE:BTCUSDT",
            "timeframe": "60",
            "options": {"length": 14},
            "indicatorId": "USER;xyz",
            "session": "sess",
            "signature": "sig",
        }
    )

    command = build_retry_sweep_cell_command(request=request)

    assert command.job_id == UUID(int=1)
    assert command.indicator_id == "USER;xyz"
    assert dict(command.options) == {"length": 14}


def test_list_and_retry_responses_use_wire_names() -> None:
    """Ensure list rows and retry outcomes render the documented wire keys."""
    created_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
    rows = build_sweep_jobs_list_response(
        items=(
            SweepJobListItem(
                job_id=UUID(int=1),
                created_at=created_at,
                status="completed",
                result_count=4,
                is_archived=True,
            ),
        )
    )
    failure = SweepTestResult.failure(
        symbol="BINANCE:BTCUSDT",
        timeframe="60",
        options={"length": 14},
        error="HTTP 429: Too Many Requests",
    )

    retry = build_sweep_retry_response(
        outcome=RetrySweepCellOutcome(result=failure, position=0, replaced=True)
    )

    assert rows == [
        {
            "id": str(UUID(int=1)),
            "date": created_at.isoformat(),
            "status": "completed",
            "resultCount": 4,
            "isArchived": True,
        }
    ]
    assert retry == {
        "success": False,
        "error": "HTTP 429: Too Many Requests",
        "result": failure.to_mapping(),
    }
