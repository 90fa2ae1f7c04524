from __future__ import annotations

from typing import Protocol
from uuid import UUID

from optisweep.contexts.sweeps.application.dto import SweepProviderCredentials


class SweepJobDispatcher(Protocol):
    """
    Hands a registered job to its executor without blocking the submitter.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_job_dispatcher.py
      - src/optisweep/contexts/sweeps/application/use_cases/sweep_jobs_api_v1.py
    """

    def dispatch(self, *, job_id: UUID, credentials: SweepProviderCredentials) -> None:
        ...
