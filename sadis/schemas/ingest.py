"""Schemas for the FTP folder ingestion engine.

Covers configuration (server + monitored folders), remote listings,
per-item outcomes, cycle results, the operation log, and status reporting.
"""

import re
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Config ---

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_UNSAFE_NAME_CHARS = ("/", "\\", "\x00")


def normalize_host(value: str) -> str:
    """Strip a scheme prefix and any trailing path from a host string.

    ``ftp://ftp.example.com/pub/`` -> ``ftp.example.com``
    """
    host = value.strip()
    host = _SCHEME_RE.sub("", host)
    return host.split("/", 1)[0].strip()


class ServerDescriptor(BaseModel):
    """Connection details for the FTP server plus the local root directory."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(description="Host name or address, scheme and path stripped")
    port: int = Field(default=21, ge=1, le=65535)
    username: str = Field(min_length=1)
    password: str | None = None
    local_path: str = Field(min_length=1, description="Root local path for all downloads")

    @field_validator("host", mode="before")
    @classmethod
    def _normalize_host(cls, value: object) -> object:
        if isinstance(value, str):
            return normalize_host(value)
        return value

    @field_validator("host")
    @classmethod
    def _host_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Host is required")
        return value


class MonitoredFolder(BaseModel):
    """One remote directory polled on its own interval."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, min_length=1)
    name: str = Field(min_length=1, description="Display name, also the local subfolder name")
    remote_path: str
    interval: int = Field(ge=1, description="Polling interval in whole minutes")

    @field_validator("name")
    @classmethod
    def _filesystem_safe(cls, value: str) -> str:
        if value != value.strip():
            raise ValueError("Folder name must not start or end with whitespace")
        if value in (".", ".."):
            raise ValueError("Folder name must not be '.' or '..'")
        if any(ch in value for ch in _UNSAFE_NAME_CHARS):
            raise ValueError("Folder name must not contain path separators")
        return value

    @field_validator("remote_path")
    @classmethod
    def _absolute_remote_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("Remote path must start with /")
        return value


class AppConfig(BaseModel):
    """The complete applied configuration: one server, many folders."""

    model_config = ConfigDict(frozen=True)

    server: ServerDescriptor
    folders: tuple[MonitoredFolder, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_folder_ids(self) -> "AppConfig":
        ids = [f.id for f in self.folders]
        if len(ids) != len(set(ids)):
            raise ValueError("Folder ids must be unique")
        return self

    def folder(self, folder_id: str) -> MonitoredFolder | None:
        for f in self.folders:
            if f.id == folder_id:
                return f
        return None


# --- Remote listing ---


class EntryKind(StrEnum):
    """Kind of a remote directory entry."""

    FILE = "file"
    DIRECTORY = "directory"
    UNKNOWN = "unknown"


class RemoteEntry(BaseModel):
    """A single entry from one remote directory listing."""

    name: str
    kind: EntryKind
    size: int | None = Field(default=None, ge=0, description="Size in bytes (files only)")


# --- Outcomes ---


class Downloaded(BaseModel):
    kind: Literal["downloaded"] = "downloaded"
    name: str
    size: int = Field(default=0, ge=0)
    path: str = ""


class DownloadFailed(BaseModel):
    kind: Literal["download_failed"] = "download_failed"
    name: str
    error: str


class SkippedDirectory(BaseModel):
    kind: Literal["skipped_directory"] = "skipped_directory"
    name: str


class SkippedUnknown(BaseModel):
    kind: Literal["skipped_unknown"] = "skipped_unknown"
    name: str


IngestOutcome = Annotated[
    Downloaded | DownloadFailed | SkippedDirectory | SkippedUnknown,
    Field(discriminator="kind"),
]


class WorkerState(StrEnum):
    """States of the per-folder cycle state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    LISTING = "listing"
    PROCESSING = "processing"


class CycleStatus(StrEnum):
    """Overall result of one cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class CycleResult(BaseModel):
    """Aggregate result of one connect -> list -> process -> disconnect pass."""

    folder_id: str
    folder_name: str
    status: CycleStatus
    started_at: datetime
    finished_at: datetime
    outcomes: list[IngestOutcome] = Field(default_factory=list)
    error: str = Field(default="", description="Cycle-level error (connect / listing)")

    @property
    def success(self) -> bool:
        """Item-level failures never downgrade this; only connect/list errors do."""
        return self.status != CycleStatus.FAILED

    @property
    def downloaded(self) -> int:
        return sum(1 for o in self.outcomes if o.kind == "downloaded")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.kind == "download_failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.kind in ("skipped_directory", "skipped_unknown"))


class OutcomeRecord(BaseModel):
    """A persisted audit record for one processed item."""

    timestamp: datetime
    folder_id: str
    folder_name: str
    outcome: IngestOutcome


# --- Operation log ---


class Severity(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LogEntry(BaseModel):
    """One line in the operation log. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    message: str
    severity: Severity = Severity.INFO


# --- Status ---


class AppStatus(StrEnum):
    """Coarse engine status shown to collaborators."""

    IDLE = "idle"
    CONFIGURING = "configuring"
    MONITORING = "monitoring"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    SUCCESS = "success"
    ERROR = "error"


class StatusSnapshot(BaseModel):
    """Point-in-time view of the engine for display."""

    status: AppStatus
    monitoring: bool
    config: AppConfig | None = None
    logs: tuple[LogEntry, ...] = ()


class ActionResponse(BaseModel):
    """Result of a collaborator-initiated action (submit / toggle)."""

    success: bool
    message: str
    config: AppConfig | None = None
    error_details: dict[str, list[str]] = Field(default_factory=dict)


# --- Local listing ---


class LocalFileEntry(BaseModel):
    """A file already mirrored into a local folder."""

    name: str
    size: int = Field(ge=0)
    last_modified: datetime
