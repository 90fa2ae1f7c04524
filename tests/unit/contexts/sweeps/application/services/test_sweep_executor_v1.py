from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from uuid import UUID

import pytest

from optisweep.contexts.sweeps.adapters.outbound import InMemorySweepJobRegistry
from optisweep.contexts.sweeps.application.dto import SweepEvent, SweepProviderCredentials
from optisweep.contexts.sweeps.application.services import (
    SHUTDOWN_INTERRUPTED_MESSAGE,
    SweepExecutorHooks,
    SweepJobExecutor,
)
from optisweep.contexts.sweeps.domain.entities import SweepJob, SweepRequestSnapshot

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
_JOB_ID = UUID("00000000-0000-4000-8000-00000000000a")
_CREDENTIALS = SweepProviderCredentials(session="sess", signature="sig")

EvaluateBehavior = Callable[[int], Any]


class _RecordingPublisher:
    """
    Publisher fake storing every event in publish order.
    """

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    def publish(self, *, job_id: UUID, event: SweepEvent) -> int:
        _ = job_id
        self.messages.append(event.to_message())
        return 1

    def kinds(self) -> list[str]:
        return [message["type"] for message in self.messages]


class _FakePair:
    def __init__(self, *, provider: _FakeProvider, symbol: str, timeframe: str) -> None:
        self._provider = provider
        self._symbol = symbol
        self._timeframe = timeframe

    async def evaluate(self, *, indicator_id: str, options: Mapping[str, Any], window) -> Any:
        _ = indicator_id, window
        self._provider.calls.append((self._symbol, self._timeframe, dict(options)))
        call_number = len(self._provider.calls)
        behavior = self._provider.behavior
        if behavior is not None:
            outcome = behavior(call_number)
            if asyncio.iscoroutine(outcome):
                outcome = await outcome
            if isinstance(outcome, BaseException):
                raise outcome
        return {"performance": {"all": {"netProfit": float(call_number)}}}

    async def close(self) -> None:
        self._provider.closed_pairs += 1


class _FakeClient:
    def __init__(self, *, provider: _FakeProvider) -> None:
        self._provider = provider

    async def open_pair(self, *, symbol: str, timeframe: str) -> _FakePair:
        if self._provider.open_pair_error is not None:
            raise self._provider.open_pair_error
        self._provider.opened_pairs += 1
        return _FakePair(provider=self._provider, symbol=symbol, timeframe=timeframe)

    async def close(self) -> None:
        self._provider.closed_clients += 1


class _FakeProvider:
    """
    Provider fake with per-call behavior hook and resource accounting.
    """

    def __init__(self, *, behavior: EvaluateBehavior | None = None) -> None:
        self.behavior = behavior
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.connect_error: Exception | None = None
        self.open_pair_error: Exception | None = None
        self.opened_pairs = 0
        self.closed_pairs = 0
        self.closed_clients = 0

    async def connect(self, *, credentials: SweepProviderCredentials) -> _FakeClient:
        _ = credentials
        if self.connect_error is not None:
            raise self.connect_error
        return _FakeClient(provider=self)


class _RecordingArchive:
    def __init__(self) -> None:
        self.saved_statuses: list[str] = []

    def save(self, *, job: SweepJob) -> None:
        self.saved_statuses.append(job.status)


def _register_job(registry: InMemorySweepJobRegistry) -> SweepJob:
    job = SweepJob.create_pending(
        job_id=_JOB_ID,
        owner_key=None,
        request=SweepRequestSnapshot(
            indicator_id="USER;abc",
            symbols=("BINANCE:BTCUSDT", "BINANCE:ETHUSDT"),
            timeframes=("60",),
            combinations=({"length": 10}, {"length": 20}, {"length": 30}),
        ),
        created_at=_NOW,
    )
    registry.add(job=job)
    return job


def _executor(
    *,
    registry: InMemorySweepJobRegistry,
    provider: _FakeProvider,
    publisher: _RecordingPublisher,
    **overrides: Any,
) -> SweepJobExecutor:
    options: dict[str, Any] = {
        "cell_timeout_seconds": 1.0,
        "dispatch_delay_seconds": 0.0,
        "now_provider": lambda: _NOW,
    }
    options.update(overrides)
    return SweepJobExecutor(
        registry=registry,
        provider=provider,
        publisher=publisher,
        **options,
    )


def test_sweep_executor_runs_all_cells_in_nested_order() -> None:
    """Ensure cells run symbols x timeframes x combinations in order and complete."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    provider = _FakeProvider()
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(registry=registry, provider=provider, publisher=publisher).run(
            job_id=_JOB_ID, credentials=_CREDENTIALS
        )
    )

    assert job.status == "completed"
    assert [(call[0], call[2]["length"]) for call in provider.calls] == [
        ("BINANCE:BTCUSDT", 10),
        ("BINANCE:BTCUSDT", 20),
        ("BINANCE:BTCUSDT", 30),
        ("BINANCE:ETHUSDT", 10),
        ("BINANCE:ETHUSDT", 20),
        ("BINANCE:ETHUSDT", 30),
    ]
    assert len(job.results) == 6
    assert job.results[0].summary is not None
    assert job.results[0].summary.net_profit == 1.0
    assert job.completed_cells == 6
    assert provider.opened_pairs == provider.closed_pairs == 2
    assert provider.closed_clients == 1

    kinds = publisher.kinds()
    assert kinds[0] == "status"
    assert publisher.messages[0]["status"] == "running"
    assert kinds[1:7] == ["pending"] * 6
    assert kinds[7:10] == ["running", "result", "progress"]
    assert kinds[-2:] == ["status", "complete"]
    assert publisher.messages[-1]["resultCount"] == 6
    assert publisher.messages[-3] == {"type": "progress", "current": 6, "total": 6, "percent": 100}


def test_sweep_executor_fails_fast_on_kth_cell() -> None:
    """Ensure the Kth failing cell stops the job with exactly K results."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    provider = _FakeProvider(
        behavior=lambda call: RuntimeError("HTTP 500: engine crashed") if call == 3 else None
    )
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(registry=registry, provider=provider, publisher=publisher).run(
            job_id=_JOB_ID, credentials=_CREDENTIALS
        )
    )

    assert job.status == "failed"
    assert job.error == "HTTP 500: engine crashed"
    assert len(job.results) == 3
    assert job.results[2].error == "HTTP 500: engine crashed"
    assert len(provider.calls) == 3
    assert provider.closed_pairs == provider.opened_pairs == 1
    assert provider.closed_clients == 1
    assert publisher.kinds()[-2:] == ["status", "error"]
    assert publisher.messages[-2]["status"] == "failed"
    assert "rate_limit" not in publisher.kinds()


def test_sweep_executor_stops_after_in_flight_cell_when_cancelled() -> None:
    """Ensure no cell starts after cancellation; the in-flight one is still recorded."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    finished: list[str] = []

    def _cancel_during_second_call(call: int) -> None:
        if call == 2:
            job.request_cancel(now=_NOW)
        return None

    provider = _FakeProvider(behavior=_cancel_during_second_call)
    publisher = _RecordingPublisher()
    executor = _executor(
        registry=registry,
        provider=provider,
        publisher=publisher,
        hooks=SweepExecutorHooks(on_job_finished=finished.append),
    )

    asyncio.run(executor.run(job_id=_JOB_ID, credentials=_CREDENTIALS))

    assert job.status == "cancelled"
    assert job.error is None
    assert len(provider.calls) == 2
    assert len(job.results) == 2
    assert finished == ["cancelled"]
    assert "complete" not in publisher.kinds()
    assert provider.closed_clients == 1


def test_sweep_executor_failure_after_cancel_keeps_cancelled_status() -> None:
    """Ensure a failing in-flight cell after cancel does not flip status to failed."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)

    def _cancel_then_fail(call: int) -> Exception | None:
        if call == 1:
            job.request_cancel(now=_NOW)
            return RuntimeError("HTTP 500: boom")
        return None

    provider = _FakeProvider(behavior=_cancel_then_fail)
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(registry=registry, provider=provider, publisher=publisher).run(
            job_id=_JOB_ID, credentials=_CREDENTIALS
        )
    )

    assert job.status == "cancelled"
    assert len(job.results) == 1
    assert job.error is None


def test_sweep_executor_timeout_is_a_provider_failure() -> None:
    """Ensure a hanging provider call fails the job after the cell timeout."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    provider = _FakeProvider(behavior=lambda call: asyncio.sleep(5) if call == 1 else None)
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(
            registry=registry,
            provider=provider,
            publisher=publisher,
            cell_timeout_seconds=0.05,
        ).run(job_id=_JOB_ID, credentials=_CREDENTIALS)
    )

    assert job.status == "failed"
    assert len(job.results) == 1
    assert job.error is not None
    assert job.error.startswith("Timeout waiting for backtest report after 0.05s")


def test_sweep_executor_publishes_rate_limit_hint() -> None:
    """Ensure rate-limit flavoured failures publish a rate_limit event before failing."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    rate_limited: list[bool] = []
    provider = _FakeProvider(
        behavior=lambda call: RuntimeError("HTTP 429: Too Many Requests")
    )
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(
            registry=registry,
            provider=provider,
            publisher=publisher,
            hooks=SweepExecutorHooks(on_rate_limited=lambda: rate_limited.append(True)),
        ).run(job_id=_JOB_ID, credentials=_CREDENTIALS)
    )

    assert job.status == "failed"
    assert rate_limited == [True]
    assert publisher.kinds()[-3:] == ["rate_limit", "status", "error"]
    assert "rate limit reached" in publisher.messages[-3]["message"]


def test_sweep_executor_connect_failure_fails_without_results() -> None:
    """Ensure provider session setup failures are job-level failures."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    provider = _FakeProvider()
    provider.connect_error = RuntimeError("HTTP 401: invalid session")
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(registry=registry, provider=provider, publisher=publisher).run(
            job_id=_JOB_ID, credentials=_CREDENTIALS
        )
    )

    assert job.status == "failed"
    assert job.error == "HTTP 401: invalid session"
    assert job.results == []
    assert provider.calls == []


def test_sweep_executor_pair_open_failure_releases_client() -> None:
    """Ensure pair session failures still close the shared client."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    provider = _FakeProvider()
    provider.open_pair_error = RuntimeError("unknown symbol")
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(registry=registry, provider=provider, publisher=publisher).run(
            job_id=_JOB_ID, credentials=_CREDENTIALS
        )
    )

    assert job.status == "failed"
    assert job.results == []
    assert provider.closed_clients == 1


def test_sweep_executor_finishes_job_cancelled_before_start() -> None:
    """Ensure a job cancelled during the dispatch delay never runs but still finishes."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    job.request_cancel(now=_NOW)
    provider = _FakeProvider()
    publisher = _RecordingPublisher()
    archive = _RecordingArchive()
    finished: list[str] = []

    asyncio.run(
        _executor(
            registry=registry,
            provider=provider,
            publisher=publisher,
            archive=archive,
            hooks=SweepExecutorHooks(on_job_finished=finished.append),
        ).run(job_id=_JOB_ID, credentials=_CREDENTIALS)
    )

    assert job.status == "cancelled"
    assert provider.calls == []
    assert publisher.kinds() == ["saved"]
    assert archive.saved_statuses == ["cancelled"]
    assert finished == ["cancelled"]


def test_sweep_executor_persists_every_state_change() -> None:
    """Ensure archive receives running and terminal snapshots and saved is published."""
    registry = InMemorySweepJobRegistry()
    _register_job(registry)
    archive = _RecordingArchive()
    publisher = _RecordingPublisher()

    asyncio.run(
        _executor(
            registry=registry,
            provider=_FakeProvider(),
            publisher=publisher,
            archive=archive,
            announce_pending_cells=False,
        ).run(job_id=_JOB_ID, credentials=_CREDENTIALS)
    )

    assert archive.saved_statuses == ["running", "completed"]
    assert "pending" not in publisher.kinds()
    assert publisher.kinds()[-1] == "complete"
    assert "saved" in publisher.kinds()


def test_sweep_executor_marks_job_failed_on_shutdown() -> None:
    """Ensure task cancellation marks a running job failed and propagates."""
    registry = InMemorySweepJobRegistry()
    job = _register_job(registry)
    started = asyncio.Event()

    async def _hang() -> None:
        started.set()
        await asyncio.sleep(5)

    provider = _FakeProvider(behavior=lambda call: _hang())
    publisher = _RecordingPublisher()

    async def _scenario() -> None:
        executor = _executor(registry=registry, provider=provider, publisher=publisher)
        task = asyncio.create_task(executor.run(job_id=_JOB_ID, credentials=_CREDENTIALS))
        await asyncio.wait_for(started.wait(), timeout=1.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_scenario())

    assert job.status == "failed"
    assert job.error == SHUTDOWN_INTERRUPTED_MESSAGE
    assert provider.closed_clients == 1
