from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping
from uuid import UUID

from optisweep.contexts.sweeps.application.dto import SweepEvent, error_event, status_event
from optisweep.contexts.sweeps.application.ports import SweepEventSink
from optisweep.contexts.sweeps.domain.entities import SweepJob

log = logging.getLogger(__name__)

SweepJobReader = Callable[[UUID], SweepJob | None]


@dataclass(frozen=True, slots=True)
class SweepBroadcastHubHooks:
    """
    Optional callbacks for hub delivery counters.

    Parameters:
    - on_delivered: callback invoked once per frame accepted by one observer outbox.
    - on_dropped: callback invoked once per frame dropped by a full observer outbox.

    Assumptions/Invariants:
    - Callbacks are lightweight and non-blocking.
    """

    on_delivered: Callable[[], None] | None = None
    on_dropped: Callable[[], None] | None = None


class QueueSweepEventSink:
    """
    Bounded in-memory outbox for one live observer connection.

    Parameters:
    - sink_id: unique connection identifier.
    - max_size: outbox capacity; full outbox drops new frames.

    Assumptions/Invariants:
    - Exactly one transport task drains the outbox.
    """

    def __init__(self, *, sink_id: str, max_size: int) -> None:
        if not sink_id.strip():
            raise ValueError("QueueSweepEventSink requires non-empty sink_id")
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._sink_id = sink_id
        self._queue: asyncio.Queue[Mapping[str, Any]] = asyncio.Queue(maxsize=max_size)

    @property
    def sink_id(self) -> str:
        return self._sink_id

    def offer(self, *, message: Mapping[str, Any]) -> bool:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self) -> Mapping[str, Any]:
        return await self._queue.get()

    def pending_count(self) -> int:
        return self._queue.qsize()


class SweepBroadcastHub:
    """
    At-most-once, no-backlog fan-out of job events to subscribed observers.

    Parameters:
    - job_reader: callable returning the live job for the synthetic subscribe status.
    - hooks: optional delivery counters.

    Assumptions/Invariants:
    - All calls happen on one event loop, so the registry needs no lock.
    - A connection is tagged with at most one job at a time.
    - Events published before a subscription are never replayed.
    """

    def __init__(
        self,
        *,
        job_reader: SweepJobReader,
        hooks: SweepBroadcastHubHooks | None = None,
    ) -> None:
        """
        Initialize empty subscription registry.

        Parameters:
        - job_reader: live job reader used on subscribe.
        - hooks: optional callbacks.

        Returns:
        - None.

        Assumptions/Invariants:
        - `job_reader` is cheap and non-blocking.

        Errors/Exceptions:
        - Raises `ValueError` when `job_reader` is missing.

        Side effects:
        - None.
        """
        if job_reader is None:  # type: ignore[truthy-bool]
            raise ValueError("SweepBroadcastHub requires job_reader")
        self._job_reader = job_reader
        self._hooks = hooks if hooks is not None else SweepBroadcastHubHooks()
        self._sinks: dict[str, SweepEventSink] = {}
        self._job_by_sink: dict[str, UUID] = {}
        self._sinks_by_job: dict[UUID, set[str]] = {}

    def attach(self, *, sink: SweepEventSink) -> None:
        """
        Register one live connection without a job tag.

        Parameters:
        - sink: observer outbox.

        Returns:
        - None.

        Assumptions/Invariants:
        - Sink ids are unique among connected observers.

        Errors/Exceptions:
        - Raises `ValueError` when the sink id is already attached.

        Side effects:
        - Mutates the subscription registry.
        """
        if sink.sink_id in self._sinks:
            raise ValueError(f"sink already attached: {sink.sink_id}")
        self._sinks[sink.sink_id] = sink

    def subscribe(self, *, sink_id: str, job_id: UUID) -> None:
        """
        Tag one connection with a job id and send the synthetic current status.

        Parameters:
        - sink_id: attached connection id.
        - job_id: job to observe; re-subscribing moves the tag.

        Returns:
        - None.

        Assumptions/Invariants:
        - Unknown jobs still record the subscription and reply with one `error` frame.

        Errors/Exceptions:
        - Raises `KeyError` when the sink is not attached.

        Side effects:
        - Mutates the subscription registry.
        - Offers one frame to the subscribing sink.
        """
        sink = self._sinks[sink_id]
        self._untag(sink_id=sink_id)
        self._job_by_sink[sink_id] = job_id
        self._sinks_by_job.setdefault(job_id, set()).add(sink_id)
        log.debug("event=hub_subscribed sink_id=%s job_id=%s", sink_id, job_id)

        job = self._job_reader(job_id)
        if job is None:
            self._offer(sink=sink, job_id=job_id, event=error_event(message="Job not found"))
            return
        self._offer(
            sink=sink,
            job_id=job_id,
            event=status_event(
                job_id=job_id,
                status=job.status,
                current=job.completed_cells,
                total=job.total_cells,
            ),
        )

    def unsubscribe(self, *, sink_id: str) -> None:
        self._untag(sink_id=sink_id)

    def detach(self, *, sink_id: str) -> None:
        """
        Forget one closed connection and its subscription.

        Parameters:
        - sink_id: connection id.

        Returns:
        - None.

        Assumptions/Invariants:
        - Safe to call for unknown or already detached sinks.

        Errors/Exceptions:
        - None.

        Side effects:
        - Mutates the subscription registry.
        """
        self._untag(sink_id=sink_id)
        self._sinks.pop(sink_id, None)

    def publish(self, *, job_id: UUID, event: SweepEvent) -> int:
        """
        Deliver one event to every observer currently subscribed to `job_id`.

        Parameters:
        - job_id: target job.
        - event: tagged event, routed verbatim.

        Returns:
        - Number of observers whose outbox accepted the frame.

        Assumptions/Invariants:
        - Delivery is best-effort; full outboxes drop the frame for that observer only.

        Errors/Exceptions:
        - None.

        Side effects:
        - Offers frames to observer outboxes.
        """
        sink_ids = self._sinks_by_job.get(job_id)
        if not sink_ids:
            return 0
        delivered = 0
        for sink_id in tuple(sink_ids):
            sink = self._sinks.get(sink_id)
            if sink is None:
                continue
            if self._offer(sink=sink, job_id=job_id, event=event):
                delivered += 1
        return delivered

    def subscriber_count(self, *, job_id: UUID) -> int:
        return len(self._sinks_by_job.get(job_id, ()))

    def connection_count(self) -> int:
        return len(self._sinks)

    def _offer(self, *, sink: SweepEventSink, job_id: UUID, event: SweepEvent) -> bool:
        accepted = sink.offer(message=event.to_message())
        if accepted:
            _emit(self._hooks.on_delivered)
            return True
        _emit(self._hooks.on_dropped)
        log.warning(
            "event=hub_frame_dropped sink_id=%s job_id=%s kind=%s",
            sink.sink_id,
            job_id,
            event.kind,
        )
        return False

    def _untag(self, *, sink_id: str) -> None:
        previous = self._job_by_sink.pop(sink_id, None)
        if previous is None:
            return
        subscribers = self._sinks_by_job.get(previous)
        if subscribers is None:
            return
        subscribers.discard(sink_id)
        if not subscribers:
            del self._sinks_by_job[previous]


def _emit(callback: Callable[[], None] | None) -> None:
    if callback is None:
        return
    callback()
