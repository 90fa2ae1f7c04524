from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from optisweep.contexts.sweeps.domain.entities import (
    SweepCellSummary,
    SweepJob,
    SweepRequestSnapshot,
    SweepTestResult,
)
from optisweep.contexts.sweeps.domain.errors import SweepJobTransitionError

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
_JOB_ID = UUID("00000000-0000-4000-8000-000000000001")


def _request() -> SweepRequestSnapshot:
    return SweepRequestSnapshot(
        indicator_id="USER;abc",
        symbols=("BINANCE:BTCUSDT", "BINANCE:ETHUSDT"),
        timeframes=("60",),
        combinations=({"length": 10}, {"length": 20}),
    )


def _job() -> SweepJob:
    return SweepJob.create_pending(
        job_id=_JOB_ID,
        owner_key="owner",
        request=_request(),
        created_at=_NOW,
    )


def _failure(*, symbol: str = "BINANCE:BTCUSDT", length: int = 10) -> SweepTestResult:
    return SweepTestResult.failure(
        symbol=symbol,
        timeframe="60",
        options={"length": length},
        error="HTTP 500: boom",
    )


def test_sweep_job_create_pending_counts_cells() -> None:
    """Ensure new jobs start pending with cross-product cell count."""
    job = _job()

    assert job.status == "pending"
    assert job.total_cells == 4
    assert job.results == []
    assert job.progress_percent == 0


def test_sweep_job_rejects_naive_created_at() -> None:
    """Ensure creation timestamp must be UTC-aware."""
    with pytest.raises(SweepJobTransitionError):
        SweepJob.create_pending(
            job_id=_JOB_ID,
            owner_key=None,
            request=_request(),
            created_at=datetime(2026, 3, 1, 12, 0),
        )


def test_sweep_job_happy_path_transitions() -> None:
    """Ensure pending -> running -> completed is allowed."""
    job = _job()

    job.mark_running(now=_NOW)
    job.mark_completed(now=_NOW + timedelta(minutes=1))

    assert job.status == "completed"
    assert job.started_at == _NOW
    assert job.finished_at == _NOW + timedelta(minutes=1)


def test_sweep_job_rejects_pending_to_completed() -> None:
    """Ensure terminal success is reachable only from running."""
    job = _job()

    with pytest.raises(SweepJobTransitionError):
        job.mark_completed(now=_NOW)


def test_sweep_job_rejects_leaving_terminal_status() -> None:
    """Ensure no transition leaves a terminal status."""
    job = _job()
    job.mark_running(now=_NOW)
    job.mark_failed(now=_NOW, error="boom")

    with pytest.raises(SweepJobTransitionError):
        job.mark_running(now=_NOW)
    with pytest.raises(SweepJobTransitionError):
        job.mark_completed(now=_NOW)


def test_sweep_job_cancel_pending_and_running() -> None:
    """Ensure both active statuses can be cancelled."""
    pending = _job()
    running = _job()
    running.mark_running(now=_NOW)

    assert pending.request_cancel(now=_NOW) is True
    assert running.request_cancel(now=_NOW) is True
    assert pending.status == "cancelled"
    assert running.status == "cancelled"
    assert running.cancel_requested is True
    assert running.error is None


def test_sweep_job_cancel_terminal_is_noop() -> None:
    """Ensure cancelling an already terminal job leaves its status unchanged."""
    job = _job()
    job.mark_running(now=_NOW)
    job.mark_completed(now=_NOW)

    assert job.request_cancel(now=_NOW + timedelta(seconds=5)) is False
    assert job.status == "completed"
    assert job.cancel_requested is False
    assert job.finished_at == _NOW


def test_sweep_job_records_in_flight_result_after_cancel() -> None:
    """Ensure the cell in flight at cancel time is still recorded."""
    job = _job()
    job.mark_running(now=_NOW)
    job.request_cancel(now=_NOW)

    position = job.record_result(result=_failure())

    assert position == 0
    assert job.status == "cancelled"


def test_sweep_job_rejects_result_before_start() -> None:
    """Ensure pending jobs cannot receive results."""
    job = _job()

    with pytest.raises(SweepJobTransitionError):
        job.record_result(result=_failure())


def test_sweep_job_upsert_replaces_matching_cell_in_place() -> None:
    """Ensure retry write-back keeps array length and position for the same cell."""
    job = _job()
    job.mark_running(now=_NOW)
    job.record_result(result=_failure(length=10))
    job.record_result(result=_failure(length=20))
    retried = SweepTestResult.success(
        symbol="BINANCE:BTCUSDT",
        timeframe="60",
        options={"length": 10},
        summary=SweepCellSummary(net_profit=12.5),
        full_report={"performance": {}},
    )

    position, replaced = job.upsert_result(result=retried)

    assert (position, replaced) == (0, True)
    assert len(job.results) == 2
    assert job.results[0].is_success
    assert not job.results[1].is_success


def test_sweep_job_upsert_appends_unknown_cell() -> None:
    """Ensure retry of a never-recorded cell appends exactly one entry."""
    job = _job()
    job.mark_running(now=_NOW)
    job.record_result(result=_failure(length=10))

    position, replaced = job.upsert_result(result=_failure(symbol="BINANCE:ETHUSDT"))

    assert (position, replaced) == (1, False)
    assert len(job.results) == 2


def test_sweep_cell_key_ignores_option_key_order() -> None:
    """Ensure cell identity compares options by content, not insertion order."""
    first = SweepTestResult.failure(
        symbol="S", timeframe="60", options={"a": 1, "b": 2}, error="x"
    )
    second = SweepTestResult.failure(
        symbol="S", timeframe="60", options={"b": 2, "a": 1}, error="x"
    )

    assert first.cell_key == second.cell_key


def test_sweep_test_result_failure_mapping_has_error_only() -> None:
    """Ensure failure wire mapping carries error without report payloads."""
    payload = _failure().to_mapping()

    assert payload == {
        "symbol": "BINANCE:BTCUSDT",
        "timeframe": "60",
        "options": {"length": 10},
        "error": "HTTP 500: boom",
    }


def test_sweep_test_result_rejects_mixed_payload() -> None:
    """Ensure a failure cannot also carry summary data."""
    with pytest.raises(SweepJobTransitionError):
        SweepTestResult(
            symbol="S",
            timeframe="60",
            options={},
            summary=SweepCellSummary(),
            error="boom",
        )


def test_sweep_job_mapping_restores_archived_state() -> None:
    """Ensure archive mapping restores status, progress and results."""
    job = _job()
    job.mark_running(now=_NOW)
    job.record_result(result=_failure())
    job.advance_progress()
    job.mark_failed(now=_NOW + timedelta(seconds=3), error="HTTP 500: boom")

    restored = SweepJob.from_mapping(job.to_mapping())

    assert restored.job_id == job.job_id
    assert restored.owner_key == "owner"
    assert restored.status == "failed"
    assert restored.error == "HTTP 500: boom"
    assert restored.completed_cells == 1
    assert restored.total_cells == 4
    assert [item.to_mapping() for item in restored.results] == [
        item.to_mapping() for item in job.results
    ]


def test_sweep_job_progress_percent_rounds() -> None:
    """Ensure progress is reported as rounded integer percent."""
    job = _job()
    job.mark_running(now=_NOW)
    job.advance_progress()

    assert job.progress_percent == 25
