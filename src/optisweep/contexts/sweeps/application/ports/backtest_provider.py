from __future__ import annotations

from typing import Any, Mapping, Protocol

from optisweep.contexts.sweeps.application.dto import EvaluationWindow, SweepProviderCredentials
from optisweep.contexts.sweeps.domain.entities import SweepScalar


class BacktestProviderPairSession(Protocol):
    """
    Provider session scoped to one `(symbol, timeframe)` pair.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_executor_v1.py
      - src/optisweep/contexts/sweeps/adapters/outbound/provider/http_backtest_provider.py
    """

    async def evaluate(
        self,
        *,
        indicator_id: str,
        options: Mapping[str, SweepScalar],
        window: EvaluationWindow,
    ) -> Mapping[str, Any]:
        """
        Evaluate one combination and return the opaque raw report.

        Args:
            indicator_id: Strategy/indicator identifier.
            options: One parameter combination.
            window: Evaluation window in UTC epoch seconds.
        Returns:
            Mapping[str, Any]: Raw provider report (may contain `performance` block).
        Assumptions:
            Caller bounds the wait with its own timeout.
        Raises:
            Exception: Any provider failure; callers sanitize the message.
        Side Effects:
            Performs external I/O.
        """
        ...

    async def close(self) -> None:
        ...


class BacktestProviderClient(Protocol):
    """
    Job-scoped provider session shared by all pairs of one job.
    """

    async def open_pair(self, *, symbol: str, timeframe: str) -> BacktestProviderPairSession:
        ...

    async def close(self) -> None:
        ...


class BacktestProvider(Protocol):
    """
    Entry point into the external evaluation provider.

    Related:
      - src/optisweep/contexts/sweeps/adapters/outbound/provider/http_backtest_provider.py
      - apps/api/wiring/modules/sweeps.py
    """

    async def connect(self, *, credentials: SweepProviderCredentials) -> BacktestProviderClient:
        """
        Open job-scoped provider session using user credentials.

        Args:
            credentials: Provider session credentials.
        Returns:
            BacktestProviderClient: Connected client.
        Assumptions:
            Credentials completeness was validated before dispatch.
        Raises:
            Exception: Any connection failure; callers sanitize the message.
        Side Effects:
            Performs external I/O.
        """
        ...
