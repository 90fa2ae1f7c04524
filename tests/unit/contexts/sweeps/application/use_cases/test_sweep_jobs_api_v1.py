from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import pytest

from optisweep.contexts.sweeps.adapters.outbound import InMemorySweepJobRegistry
from optisweep.contexts.sweeps.application.dto import (
    SWEEP_CANCELLED_MESSAGE,
    SubmitSweepCommand,
    SweepEvent,
    SweepParameterRange,
    SweepProviderCredentials,
    build_sweep_owner_key,
)
from optisweep.contexts.sweeps.application.services import SweepJobLookup
from optisweep.contexts.sweeps.application.use_cases import (
    CancelSweepJobUseCase,
    GetSweepJobUseCase,
    ListSweepJobsUseCase,
    SubmitSweepJobUseCase,
    SweepJobsApiHooks,
)
from optisweep.contexts.sweeps.domain.errors import (
    RangeTooLargeError,
    SweepCredentialsError,
    SweepJobNotFoundError,
    SweepStorageError,
)

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
_JOB_ID = UUID("00000000-0000-4000-8000-0000000000c1")
_CREDENTIALS = SweepProviderCredentials(session="sess", signature="sig")
_OWNER = build_sweep_owner_key(session="sess")


class _RecordingDispatcher:
    def __init__(self) -> None:
        self.dispatched: list[tuple[UUID, SweepProviderCredentials]] = []

    def dispatch(self, *, job_id: UUID, credentials: SweepProviderCredentials) -> None:
        self.dispatched.append((job_id, credentials))


class _RecordingPublisher:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    def publish(self, *, job_id: UUID, event: SweepEvent) -> int:
        _ = job_id
        self.messages.append(event.to_message())
        return 0


class _FailingArchive:
    """
    Archive fake whose writes always fail.
    """

    def __init__(self) -> None:
        self.attempts = 0

    def save(self, *, job) -> None:
        _ = job
        self.attempts += 1
        raise SweepStorageError("disk full")


def _command(**overrides: Any) -> SubmitSweepCommand:
    values: dict[str, Any] = {
        "indicator_id": "USER;abc",
        "symbols": ("BINANCE:BTCUSDT", "BINANCE:ETHUSDT"),
        "timeframes": ("60",),
        "credentials": _CREDENTIALS,
        "base_options": {"length": 14, "source": "close"},
        "ranges": {"length": SweepParameterRange(active=True, minimum=10, maximum=12, step=1)},
    }
    values.update(overrides)
    return SubmitSweepCommand(**values)


def _submit_use_case(
    *,
    registry: InMemorySweepJobRegistry,
    dispatcher: _RecordingDispatcher,
    **overrides: Any,
) -> SubmitSweepJobUseCase:
    return SubmitSweepJobUseCase(
        registry=registry,
        dispatcher=dispatcher,
        now_provider=lambda: _NOW,
        job_id_factory=lambda: _JOB_ID,
        **overrides,
    )


def test_submit_sweep_job_registers_pending_job_and_dispatches() -> None:
    """Ensure submission expands ranges, registers the job and schedules execution."""
    registry = InMemorySweepJobRegistry()
    dispatcher = _RecordingDispatcher()
    submitted: list[bool] = []
    use_case = _submit_use_case(
        registry=registry,
        dispatcher=dispatcher,
        hooks=SweepJobsApiHooks(on_submitted=lambda: submitted.append(True)),
    )

    job = use_case.execute(command=_command())

    assert job.job_id == _JOB_ID
    assert job.status == "pending"
    assert job.owner_key == _OWNER
    assert job.created_at == _NOW
    assert job.total_cells == 6
    assert [item["length"] for item in job.request.combinations] == [10, 11, 12]
    assert all(item["source"] == "close" for item in job.request.combinations)
    assert registry.get(job_id=_JOB_ID) is job
    assert dispatcher.dispatched == [(_JOB_ID, _CREDENTIALS)]
    assert submitted == [True]


def test_submit_sweep_job_keeps_pre_expanded_combinations_verbatim() -> None:
    """Ensure explicit combinations are not re-expanded or reordered."""
    registry = InMemorySweepJobRegistry()
    use_case = _submit_use_case(registry=registry, dispatcher=_RecordingDispatcher())
    combinations = ({"length": 30}, {"length": 10})

    job = use_case.execute(
        command=_command(base_options=None, ranges=None, combinations=combinations)
    )

    assert [dict(item) for item in job.request.combinations] == [{"length": 30}, {"length": 10}]


def test_submit_sweep_job_rejects_oversized_range_before_registering() -> None:
    """Ensure a range over the per-key limit rejects the submission without side effects."""
    registry = InMemorySweepJobRegistry()
    dispatcher = _RecordingDispatcher()
    use_case = _submit_use_case(registry=registry, dispatcher=dispatcher, max_values_per_key=2)

    with pytest.raises(RangeTooLargeError):
        use_case.execute(command=_command())

    assert registry.list() == ()
    assert dispatcher.dispatched == []


def test_submit_sweep_job_requires_credentials() -> None:
    """Ensure submissions without provider credentials are rejected."""
    registry = InMemorySweepJobRegistry()
    use_case = _submit_use_case(registry=registry, dispatcher=_RecordingDispatcher())

    with pytest.raises(SweepCredentialsError):
        use_case.execute(command=_command(credentials=None))
    with pytest.raises(SweepCredentialsError):
        use_case.execute(
            command=_command(credentials=SweepProviderCredentials(session="sess", signature=""))
        )

    assert registry.list() == ()


def test_submit_sweep_job_tolerates_archive_write_failure() -> None:
    """Ensure archive failures never block accepting a job."""
    registry = InMemorySweepJobRegistry()
    dispatcher = _RecordingDispatcher()
    archive = _FailingArchive()
    use_case = _submit_use_case(registry=registry, dispatcher=dispatcher, archive=archive)

    job = use_case.execute(command=_command())

    assert archive.attempts == 1
    assert dispatcher.dispatched == [(job.job_id, _CREDENTIALS)]


def _registered_job(registry: InMemorySweepJobRegistry):
    use_case = _submit_use_case(registry=registry, dispatcher=_RecordingDispatcher())
    return use_case.execute(command=_command())


def test_cancel_sweep_job_moves_active_job_to_cancelled() -> None:
    """Ensure cancel transitions an active job and publishes status then error."""
    registry = InMemorySweepJobRegistry()
    job = _registered_job(registry)
    publisher = _RecordingPublisher()
    cancelled_hook: list[bool] = []
    use_case = CancelSweepJobUseCase(
        lookup=SweepJobLookup(registry=registry),
        publisher=publisher,
        hooks=SweepJobsApiHooks(on_cancelled=lambda: cancelled_hook.append(True)),
        now_provider=lambda: _NOW,
    )

    assert use_case.execute(job_id=job.job_id, owner_key=_OWNER) is True

    assert job.status == "cancelled"
    assert job.cancel_requested is True
    assert [message["type"] for message in publisher.messages] == ["status", "error"]
    assert publisher.messages[0]["status"] == "cancelled"
    assert publisher.messages[1]["message"] == SWEEP_CANCELLED_MESSAGE
    assert cancelled_hook == [True]


def test_cancel_sweep_job_is_noop_for_terminal_job() -> None:
    """Ensure cancelling a finished job succeeds as a no-op without events."""
    registry = InMemorySweepJobRegistry()
    job = _registered_job(registry)
    job.request_cancel(now=_NOW)
    publisher = _RecordingPublisher()
    use_case = CancelSweepJobUseCase(lookup=SweepJobLookup(registry=registry), publisher=publisher)

    assert use_case.execute(job_id=job.job_id, owner_key=_OWNER) is False
    assert publisher.messages == []


def test_cancel_sweep_job_hides_foreign_job() -> None:
    """Ensure callers cannot cancel a job owned by another session."""
    registry = InMemorySweepJobRegistry()
    job = _registered_job(registry)
    use_case = CancelSweepJobUseCase(
        lookup=SweepJobLookup(registry=registry),
        publisher=_RecordingPublisher(),
    )

    with pytest.raises(SweepJobNotFoundError):
        use_case.execute(job_id=job.job_id, owner_key=build_sweep_owner_key(session="other"))

    assert job.status == "pending"


def test_get_and_list_sweep_jobs_use_owner_scope() -> None:
    """Ensure get and list only expose jobs of the calling owner."""
    registry = InMemorySweepJobRegistry()
    job = _registered_job(registry)
    lookup = SweepJobLookup(registry=registry)

    assert GetSweepJobUseCase(lookup=lookup).execute(job_id=job.job_id, owner_key=_OWNER) is job
    assert [
        item.job_id for item in ListSweepJobsUseCase(lookup=lookup).execute(owner_key=_OWNER)
    ] == [job.job_id]
    assert ListSweepJobsUseCase(lookup=lookup).execute(owner_key=None) == ()
