from __future__ import annotations

import asyncio
import gzip
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal, Mapping
from uuid import UUID

from optisweep.contexts.sweeps.application.services import SweepJobLookup
from optisweep.contexts.sweeps.domain.entities import SweepJob
from optisweep.contexts.sweeps.domain.errors import SweepJobNotFoundError, SweepStorageError

log = logging.getLogger(__name__)

SweepStreamEventName = Literal["metadata", "results", "complete", "error"]
STREAM_BATCH_SIZE_DEFAULT = 50


@dataclass(frozen=True, slots=True)
class SweepStreamFrame:
    """
    One named server-sent event of the history stream.

    Related:
      - apps/api/routes/sweeps.py
    """

    event: SweepStreamEventName
    data: Mapping[str, Any]

    def to_sse(self) -> str:
        """
        Render frame in `text/event-stream` wire format.

        Args:
            None.
        Returns:
            str: `event: <name>\\ndata: <json>\\n\\n` block.
        Assumptions:
            JSON payload is single-line.
        Raises:
            None.
        Side Effects:
            None.
        """
        payload = json.dumps(self.data, separators=(",", ":"), default=str)
        return f"event: {self.event}\ndata: {payload}\n\n"


@dataclass(frozen=True, slots=True)
class SweepExportSizeEstimate:
    compressed_size: int
    result_count: int


@dataclass(frozen=True, slots=True)
class SweepExportFile:
    filename: str
    content: bytes


class SweepResultsExportUseCase:
    """
    Replay a job's stored results in batches and build compressed snapshots.

    Unlike the live hub this always replays everything currently stored, so it is the
    resume channel after a disconnect and the browse channel for history.

    Related:
      - src/optisweep/contexts/sweeps/application/services/sweep_job_lookup.py
      - src/optisweep/contexts/sweeps/application/services/broadcast_hub.py
      - apps/api/routes/sweeps.py
    """

    def __init__(
        self,
        *,
        lookup: SweepJobLookup,
        batch_size: int = STREAM_BATCH_SIZE_DEFAULT,
    ) -> None:
        if lookup is None:  # type: ignore[truthy-bool]
            raise ValueError("SweepResultsExportUseCase requires lookup")
        if batch_size <= 0:
            raise ValueError("SweepResultsExportUseCase requires batch_size > 0")
        self._lookup = lookup
        self._batch_size = batch_size

    async def stream(
        self,
        *,
        job_id: UUID,
        owner_key: str | None,
    ) -> AsyncIterator[SweepStreamFrame]:
        """
        Yield `metadata`, batched `results` and terminal `complete` frames.

        Args:
            job_id: Requested job identifier.
            owner_key: Caller owner key.
        Returns:
            AsyncIterator[SweepStreamFrame]: Finite frame sequence.
        Assumptions:
            Results are snapshotted when the stream opens; later appends are not included.
        Raises:
            None. Missing or unreadable jobs produce a single `error` frame.
        Side Effects:
            Reads archive storage in a worker thread.
        """
        try:
            job = await self._load_owned(job_id=job_id, owner_key=owner_key)
        except SweepJobNotFoundError:
            yield SweepStreamFrame(event="error", data={"message": "Job not found"})
            return
        except SweepStorageError:
            log.exception("event=stream_job_unreadable job_id=%s", job_id)
            yield SweepStreamFrame(event="error", data={"message": "Job data is unreadable"})
            return

        results = list(job.results)
        total = len(results)
        log.info("event=stream_started job_id=%s results=%s", job_id, total)
        yield SweepStreamFrame(
            event="metadata",
            data={
                "jobId": str(job.job_id),
                "status": job.status,
                "createdAt": job.created_at.isoformat(),
                "error": job.error,
                "config": job.request.to_mapping(),
                "totalResults": total,
            },
        )
        for start in range(0, total, self._batch_size):
            batch = results[start : start + self._batch_size]
            yield SweepStreamFrame(
                event="results",
                data={
                    "results": [item.to_mapping() for item in batch],
                    "progress": start + len(batch),
                    "total": total,
                },
            )
        yield SweepStreamFrame(
            event="complete",
            data={"jobId": str(job.job_id), "status": job.status, "total": total},
        )

    async def estimate_size(
        self,
        *,
        job_id: UUID,
        owner_key: str | None,
    ) -> SweepExportSizeEstimate:
        """
        Estimate compressed export size without transferring the payload.

        Args:
            job_id: Requested job identifier.
            owner_key: Caller owner key.
        Returns:
            SweepExportSizeEstimate: Compressed byte size and result count.
        Assumptions:
            Estimate uses the same encoding as `export`.
        Raises:
            SweepJobNotFoundError: If the job is missing or owned by someone else.
            SweepStorageError: If the archived snapshot is unreadable.
        Side Effects:
            Reads archive storage and compresses in worker threads.
        """
        job = await self._load_owned(job_id=job_id, owner_key=owner_key)
        content = await asyncio.to_thread(_compress_payload, _snapshot_payload(job=job))
        return SweepExportSizeEstimate(compressed_size=len(content), result_count=len(job.results))

    async def export(self, *, job_id: UUID, owner_key: str | None) -> SweepExportFile:
        job = await self._load_owned(job_id=job_id, owner_key=owner_key)
        content = await asyncio.to_thread(_compress_payload, _snapshot_payload(job=job))
        log.info("event=job_exported job_id=%s bytes=%s", job_id, len(content))
        return SweepExportFile(filename=f"backtest-{job.job_id}.json.gz", content=content)

    async def _load_owned(self, *, job_id: UUID, owner_key: str | None) -> SweepJob:
        live = self._lookup.find_live(job_id)
        if live is not None and live.owner_key == owner_key:
            return live
        return await asyncio.to_thread(
            self._lookup.require_owned,
            job_id=job_id,
            owner_key=owner_key,
        )


def _snapshot_payload(*, job: SweepJob) -> dict[str, Any]:
    payload = job.to_mapping(include_results=True)
    payload.pop("ownerKey", None)
    return payload


def _compress_payload(payload: Mapping[str, Any]) -> bytes:
    encoded = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
    return gzip.compress(encoded, mtime=0)
