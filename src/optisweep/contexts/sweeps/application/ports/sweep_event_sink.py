from __future__ import annotations

from typing import Any, Mapping, Protocol
from uuid import UUID

from optisweep.contexts.sweeps.application.dto import SweepEvent


class SweepEventSink(Protocol):
    """
    Non-blocking outbox of one live observer connection.

    Related:
      - src/optisweep/contexts/sweeps/application/services/broadcast_hub.py
      - apps/api/routes/sweeps_ws.py
    """

    @property
    def sink_id(self) -> str:
        ...

    def offer(self, *, message: Mapping[str, Any]) -> bool:
        """
        Enqueue one frame without waiting.

        Args:
            message: JSON-compatible frame.
        Returns:
            bool: `False` when the frame was dropped.
        Assumptions:
            Implementations never block the publisher.
        Raises:
            None.
        Side Effects:
            Mutates the observer outbox.
        """
        ...


class SweepEventPublisher(Protocol):
    """
    Fire-and-forget job event fan-out used by executor and use-cases.
    """

    def publish(self, *, job_id: UUID, event: SweepEvent) -> int:
        ...
