"""Append-only JSONL audit trail of per-item ingestion outcomes.

Separate from the in-memory operation log, which is bounded: this file
keeps every outcome for root-causing a string of failures.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path

from sadis.schemas.ingest import OutcomeRecord

logger = logging.getLogger(__name__)


class OutcomeAuditLog:
    """Append-only JSONL log of OutcomeRecord entries.

    Usage::

        audit = OutcomeAuditLog("/path/to/outcomes.jsonl")
        audit.log(record)
        entries = audit.read_entries(folder_id="abc", limit=20)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def log(self, record: OutcomeRecord) -> None:
        """Append a single record to the log file."""
        line = record.model_dump_json() + "\n"
        with self._lock, self._path.open("a") as f:
            f.write(line)
        logger.debug(
            "Outcome audit: %s/%s %s",
            record.folder_name,
            record.outcome.name,
            record.outcome.kind,
        )

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        folder_id: str | None = None,
        kind: str | None = None,
        limit: int | None = None,
    ) -> list[OutcomeRecord]:
        """Read audit records with optional filtering.

        Args:
            since: Only return records after this timestamp.
            folder_id: Only return records for this folder.
            kind: Only return records with this outcome kind (e.g. ``"download_failed"``).
            limit: Maximum number of records to return (newest after filtering).

        Returns:
            List of OutcomeRecord objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[OutcomeRecord] = []
        with self._path.open() as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = OutcomeRecord.model_validate_json(line)
                if since and record.timestamp <= since:
                    continue
                if folder_id and record.folder_id != folder_id:
                    continue
                if kind and record.outcome.kind != kind:
                    continue
                entries.append(record)

        if limit is not None:
            entries = entries[-limit:]

        return entries
