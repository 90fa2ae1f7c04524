from __future__ import annotations

import gzip
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping, cast
from uuid import UUID

from optisweep.contexts.sweeps.application.ports import SweepJobArchive, SweepJobArchiveEntry
from optisweep.contexts.sweeps.domain.entities import SweepJob, SweepJobStatus
from optisweep.contexts.sweeps.domain.errors import SweepStorageError

log = logging.getLogger(__name__)

_PLAIN_SUFFIX = ".json"
_COMPRESSED_SUFFIX = ".json.gz"


class FileSweepJobArchive(SweepJobArchive):
    """
    FileSweepJobArchive — one JSON document per job, gzip-compressed after retention.

    Layout: `<directory>/<job_id>.json` for recent jobs and `<directory>/<job_id>.json.gz`
    for jobs untouched longer than `retention_days`.

    Related:
      - src/optisweep/contexts/sweeps/application/ports/sweep_job_archive.py
      - src/optisweep/contexts/sweeps/adapters/outbound/config/sweeps_runtime_config.py
      - apps/api/main/app.py
    """

    def __init__(self, *, directory: str | Path, retention_days: int) -> None:
        """
        Initialize archive directory.

        Args:
            directory: Archive root directory.
            retention_days: Age after which plain files are compressed.
        Returns:
            None.
        Assumptions:
            One process owns the directory.
        Raises:
            ValueError: If retention is negative.
            SweepStorageError: If directory cannot be created.
        Side Effects:
            Creates the directory when missing.
        """
        if retention_days < 0:
            raise ValueError("FileSweepJobArchive requires retention_days >= 0")
        self._directory = Path(directory)
        self._retention = timedelta(days=retention_days)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise SweepStorageError(f"cannot create archive directory: {error}") from error

    @property
    def directory(self) -> Path:
        return self._directory

    def save(self, *, job: SweepJob) -> None:
        """
        Write full job snapshot atomically, replacing older plain or compressed snapshot.

        Args:
            job: Job to persist.
        Returns:
            None.
        Assumptions:
            The owner key is stored so history listing can filter by owner.
        Raises:
            SweepStorageError: If the file cannot be written.
        Side Effects:
            Writes one file and removes a stale compressed copy.
        """
        target = self._plain_path(job_id=job.job_id)
        temporary = target.with_name(f"{target.name}.tmp")
        encoded = json.dumps(job.to_mapping(include_results=True), default=str)
        try:
            temporary.write_text(encoded, encoding="utf-8")
            os.replace(temporary, target)
            self._compressed_path(job_id=job.job_id).unlink(missing_ok=True)
        except OSError as error:
            raise SweepStorageError(f"cannot write job archive {target.name}: {error}") from error
        log.debug("event=job_archived job_id=%s status=%s", job.job_id, job.status)

    def load(self, *, job_id: UUID) -> SweepJob | None:
        """
        Load one archived job, preferring the plain file over the compressed one.

        Args:
            job_id: Job identifier.
        Returns:
            SweepJob | None: Restored job or `None` when not archived.
        Assumptions:
            Files were written by `save`.
        Raises:
            SweepStorageError: If an existing file is unreadable or malformed.
        Side Effects:
            Reads one file.
        """
        payload = self._read_payload(job_id=job_id)
        if payload is None:
            return None
        try:
            return SweepJob.from_mapping(payload)
        except (KeyError, TypeError, ValueError) as error:
            raise SweepStorageError(f"malformed job archive {job_id}: {error}") from error

    def list_entries(self) -> tuple[SweepJobArchiveEntry, ...]:
        """
        Summarize every archived job.

        Args:
            None.
        Returns:
            tuple[SweepJobArchiveEntry, ...]: One entry per job id.
        Assumptions:
            Unreadable files are skipped with a warning.
        Raises:
            SweepStorageError: If the directory cannot be listed.
        Side Effects:
            Reads every archive file.
        """
        entries: dict[UUID, SweepJobArchiveEntry] = {}
        try:
            paths = sorted(self._directory.iterdir())
        except OSError as error:
            raise SweepStorageError(f"cannot list job archive: {error}") from error
        for path in paths:
            job_id = _job_id_from_path(path=path)
            if job_id is None or job_id in entries:
                continue
            try:
                payload = self._read_payload(job_id=job_id)
                if payload is None:
                    continue
                entries[job_id] = _entry_from_payload(
                    job_id=job_id,
                    payload=payload,
                    is_compressed=not self._plain_path(job_id=job_id).exists(),
                )
            except (SweepStorageError, KeyError, TypeError, ValueError) as error:
                log.warning("event=job_archive_skipped file=%s error=%s", path.name, error)
        return tuple(entries.values())

    def compress_stale(self, *, now: datetime) -> int:
        """
        Gzip plain snapshots untouched for longer than the retention period.

        Args:
            now: Current UTC timestamp.
        Returns:
            int: Number of compressed files.
        Assumptions:
            File modification time tracks the last job state change.
        Raises:
            SweepStorageError: If the directory cannot be listed.
        Side Effects:
            Writes `.json.gz` files and removes the plain originals.
        """
        cutoff = (now - self._retention).timestamp()
        compressed = 0
        try:
            candidates = sorted(self._directory.glob(f"*{_PLAIN_SUFFIX}"))
        except OSError as error:
            raise SweepStorageError(f"cannot list job archive: {error}") from error
        for path in candidates:
            try:
                if path.stat().st_mtime > cutoff:
                    continue
                target = path.with_name(f"{path.name}.gz")
                with gzip.open(target, "wb") as sink:
                    sink.write(path.read_bytes())
                path.unlink()
            except OSError as error:
                log.warning("event=job_archive_compress_failed file=%s error=%s", path.name, error)
                continue
            compressed += 1
            log.info("event=job_archive_compressed file=%s", path.name)
        return compressed

    def _read_payload(self, *, job_id: UUID) -> Mapping[str, Any] | None:
        plain = self._plain_path(job_id=job_id)
        compressed = self._compressed_path(job_id=job_id)
        try:
            if plain.exists():
                raw = plain.read_text(encoding="utf-8")
            elif compressed.exists():
                with gzip.open(compressed, "rt", encoding="utf-8") as source:
                    raw = source.read()
            else:
                return None
            payload = json.loads(raw)
        except (OSError, ValueError) as error:
            raise SweepStorageError(f"unreadable job archive {job_id}: {error}") from error
        if not isinstance(payload, Mapping):
            raise SweepStorageError(f"job archive {job_id} must be a JSON object")
        return payload

    def _plain_path(self, *, job_id: UUID) -> Path:
        return self._directory / f"{job_id}{_PLAIN_SUFFIX}"

    def _compressed_path(self, *, job_id: UUID) -> Path:
        return self._directory / f"{job_id}{_COMPRESSED_SUFFIX}"


def _job_id_from_path(*, path: Path) -> UUID | None:
    name = path.name
    if name.endswith(_COMPRESSED_SUFFIX):
        stem = name[: -len(_COMPRESSED_SUFFIX)]
    elif name.endswith(_PLAIN_SUFFIX):
        stem = name[: -len(_PLAIN_SUFFIX)]
    else:
        return None
    try:
        return UUID(stem)
    except ValueError:
        return None


def _entry_from_payload(
    *,
    job_id: UUID,
    payload: Mapping[str, Any],
    is_compressed: bool,
) -> SweepJobArchiveEntry:
    created_at = datetime.fromisoformat(str(payload["createdAt"]))
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    results = payload.get("results") or ()
    return SweepJobArchiveEntry(
        job_id=job_id,
        owner_key=payload.get("ownerKey"),
        created_at=created_at,
        status=cast(SweepJobStatus, payload["status"]),
        result_count=int(payload.get("resultCount", len(results))),
        is_compressed=is_compressed,
    )
