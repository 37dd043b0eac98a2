"""Bounded, newest-first operation log shared by all folder workers.

Collaborators poll ``snapshot()``; there is no subscription API.
"""

import logging
import threading
from collections import deque

from sadis.schemas.ingest import LogEntry, Severity

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 200

_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class OperationLog:
    """Fixed-capacity ring buffer of LogEntry records.

    Usage::

        oplog = OperationLog(capacity=200)
        oplog.append("Connected to ftp.example.com", Severity.INFO)
        for entry in oplog.snapshot():
            print(entry.timestamp, entry.message)
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, message: str, severity: Severity = Severity.INFO) -> LogEntry:
        """Record a message; the oldest entry is dropped once full."""
        entry = LogEntry(message=message, severity=severity)
        with self._lock:
            self._entries.appendleft(entry)
        logger.log(_LEVELS[entry.severity], "%s", message)
        return entry

    def snapshot(self) -> tuple[LogEntry, ...]:
        """Return an immutable copy of the buffer, newest first."""
        with self._lock:
            return tuple(self._entries)

    def latest(self) -> LogEntry | None:
        with self._lock:
            return self._entries[0] if self._entries else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
