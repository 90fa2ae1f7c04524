"""
Live sweep channel: one websocket connection observes at most one job at a time.

Related:
  - src/optisweep/contexts/sweeps/application/services/broadcast_hub.py
  - apps/api/wiring/modules/sweeps.py
  - apps/api/routes/sweeps.py
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping
from uuid import UUID, uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from optisweep.contexts.sweeps.application.services import (
    QueueSweepEventSink,
    SweepBroadcastHub,
)

log = logging.getLogger(__name__)


def build_sweeps_ws_router(*, hub: SweepBroadcastHub, queue_size: int) -> APIRouter:
    """
    Build websocket router bridging client frames to the broadcast hub.

    Args:
        hub: Process-wide broadcast hub.
        queue_size: Per-connection outbox capacity.
    Returns:
        APIRouter: Router exposing `/ws`.
    Assumptions:
        Exactly one sender task writes to the socket; client replies go through the outbox.
    Raises:
        ValueError: If hub is missing or queue size is not positive.
    Side Effects:
        None.
    """
    if hub is None:  # type: ignore[truthy-bool]
        raise ValueError("build_sweeps_ws_router requires hub")
    if queue_size <= 0:
        raise ValueError("build_sweeps_ws_router requires queue_size > 0")

    router = APIRouter(tags=["sweeps"])

    @router.websocket("/ws")
    async def sweeps_ws(websocket: WebSocket) -> None:
        await websocket.accept()
        sink = QueueSweepEventSink(sink_id=uuid4().hex, max_size=queue_size)
        hub.attach(sink=sink)
        log.info("event=ws_connected sink_id=%s", sink.sink_id)
        sender = asyncio.create_task(_drain_outbox(websocket=websocket, sink=sink))
        try:
            while True:
                raw = await websocket.receive_text()
                _handle_client_frame(hub=hub, sink=sink, raw=raw)
        except WebSocketDisconnect:
            log.info("event=ws_disconnected sink_id=%s", sink.sink_id)
        finally:
            hub.detach(sink_id=sink.sink_id)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass

    return router


def _handle_client_frame(*, hub: SweepBroadcastHub, sink: QueueSweepEventSink, raw: str) -> None:
    """
    Apply one client frame (`subscribe` or `unsubscribe`) to the hub.

    Args:
        hub: Broadcast hub.
        sink: Connection outbox.
        raw: Raw text frame.
    Returns:
        None.
    Assumptions:
        Malformed frames get one `error` reply and leave the subscription unchanged.
    Raises:
        None.
    Side Effects:
        Mutates hub subscriptions or offers an error frame.
    """
    frame = _parse_frame(raw=raw)
    if frame is None:
        _reply_error(sink=sink, message="Malformed message")
        return
    kind = frame.get("type")
    if kind == "unsubscribe":
        hub.unsubscribe(sink_id=sink.sink_id)
        return
    if kind != "subscribe":
        _reply_error(sink=sink, message=f"Unsupported message type: {kind!r}")
        return
    try:
        job_id = UUID(str(frame.get("jobId")))
    except ValueError:
        _reply_error(sink=sink, message="Invalid jobId")
        return
    hub.subscribe(sink_id=sink.sink_id, job_id=job_id)


def _parse_frame(*, raw: str) -> Mapping[str, Any] | None:
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(decoded, Mapping):
        return None
    return decoded


def _reply_error(*, sink: QueueSweepEventSink, message: str) -> None:
    if not sink.offer(message={"type": "error", "message": message}):
        log.warning("event=ws_error_reply_dropped sink_id=%s", sink.sink_id)


async def _drain_outbox(*, websocket: WebSocket, sink: QueueSweepEventSink) -> None:
    while True:
        message = await sink.next_message()
        try:
            await websocket.send_json(dict(message))
        except (WebSocketDisconnect, RuntimeError) as error:
            log.info("event=ws_send_failed sink_id=%s error=%s", sink.sink_id, error)
            return
