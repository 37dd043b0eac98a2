"""Error taxonomy for the ingestion engine.

Cycle-level errors (ConnectError, NotFoundError) abort one folder's cycle.
Item-level errors (TransferError, LocalIOError, AccessDeniedError) are
captured into that item's outcome and processing continues.
"""


class IngestError(Exception):
    """Base class for all ingestion errors."""


class ConnectError(IngestError):
    """Host unreachable, connection refused, timed out, or login rejected."""


class NotFoundError(IngestError):
    """The remote directory does not exist."""


class TransferError(IngestError):
    """A listing or file transfer failed mid-flight."""


class LocalIOError(IngestError):
    """Creating a local directory or writing a file failed."""


class AccessDeniedError(IngestError):
    """A resolved local path escapes the configured root."""
