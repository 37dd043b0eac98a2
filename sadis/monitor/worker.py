"""Per-folder ingestion cycle: connect, list, download, disconnect.

One FolderWorker exists per monitored folder. Cycles for the same folder
never overlap: a tick that arrives while a cycle is running is skipped
and logged, not queued. A worker rebuilt for the same folder shares its
predecessor's lock, so the guard holds across reconfiguration.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sadis.errors import (
    AccessDeniedError,
    ConnectError,
    LocalIOError,
    NotFoundError,
    TransferError,
)
from sadis.integrations.ftp import RemoteSession
from sadis.monitor.audit import OutcomeAuditLog
from sadis.monitor.oplog import OperationLog
from sadis.schemas.ingest import (
    CycleResult,
    CycleStatus,
    Downloaded,
    DownloadFailed,
    EntryKind,
    IngestOutcome,
    MonitoredFolder,
    OutcomeRecord,
    RemoteEntry,
    ServerDescriptor,
    Severity,
    SkippedDirectory,
    SkippedUnknown,
    WorkerState,
)
from sadis.storage.local_store import LocalStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ServerDescriptor], RemoteSession]


class FolderWorker:
    """Drives the cycle state machine for one monitored folder.

    idle -> connecting -> listing -> processing -> idle
    """

    def __init__(
        self,
        folder: MonitoredFolder,
        server: ServerDescriptor,
        *,
        oplog: OperationLog,
        store: LocalStore,
        session_factory: SessionFactory = RemoteSession,
        audit_log: OutcomeAuditLog | None = None,
        previous: "FolderWorker | None" = None,
    ) -> None:
        self.folder = folder
        self.server = server
        self._oplog = oplog
        self._store = store
        self._session_factory = session_factory
        self._audit_log = audit_log
        self._state = WorkerState.IDLE
        self._lock = previous._lock if previous is not None else asyncio.Lock()
        self._previous = previous
        self._last_result: CycleResult | None = None

    @property
    def state(self) -> WorkerState:
        if self._state == WorkerState.IDLE and self._previous is not None:
            return self._previous.state
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def last_result(self) -> CycleResult | None:
        if self._last_result is None and self._previous is not None:
            return self._previous.last_result
        return self._last_result

    @property
    def last_outcomes(self) -> list[IngestOutcome]:
        result = self.last_result
        if result is None:
            return []
        return list(result.outcomes)

    def _log(self, message: str, severity: Severity = Severity.INFO) -> None:
        self._oplog.append(f"[{self.folder.name}] {message}", severity)

    async def tick(self) -> CycleResult | None:
        """Run one cycle unless one is already in flight.

        Returns:
            The CycleResult, or None if the tick was skipped.
        """
        if self._lock.locked():
            self._log("Previous check still running, skipping this tick.")
            return None
        async with self._lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> CycleResult:
        started_at = datetime.now(UTC)
        outcomes: list[IngestOutcome] = []
        status = CycleStatus.SUCCESS
        error = ""

        self._state = WorkerState.CONNECTING
        self._log(f"Connecting to {self.server.host}:{self.server.port}...")
        session = self._session_factory(self.server)
        try:
            try:
                await session.connect()
                self._state = WorkerState.LISTING
                await session.change_directory(self.folder.remote_path)
                entries = await session.list()
            except (ConnectError, NotFoundError, TransferError) as exc:
                status = CycleStatus.FAILED
                error = str(exc)
                self._log(f"Check of {self.folder.remote_path} failed: {exc}", Severity.ERROR)
            else:
                self._state = WorkerState.PROCESSING
                if not entries:
                    self._log(f"No entries found in {self.folder.remote_path}.")
                elif any(e.kind == EntryKind.FILE for e in entries):
                    self._prepare_local_dir()

                for entry in entries:
                    outcome = await self._process_entry(session, entry)
                    outcomes.append(outcome)
                    self._record(outcome)

                downloaded = sum(1 for o in outcomes if o.kind == "downloaded")
                failed = sum(1 for o in outcomes if o.kind == "download_failed")
                if failed:
                    status = CycleStatus.PARTIAL
                self._log(
                    f"Check complete: {len(outcomes)} item(s) processed, "
                    f"{downloaded} downloaded, {failed} failed.",
                    Severity.WARNING if failed else Severity.SUCCESS,
                )
        except Exception as exc:
            logger.exception("Unexpected error in cycle for folder %s", self.folder.name)
            status = CycleStatus.FAILED
            error = f"Unexpected error: {exc}"
            self._log(error, Severity.ERROR)
        finally:
            await self._close(session)
            self._state = WorkerState.IDLE

        result = CycleResult(
            folder_id=self.folder.id,
            folder_name=self.folder.name,
            status=status,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            outcomes=outcomes,
            error=error,
        )
        self._last_result = result
        self._previous = None
        return result

    async def _close(self, session: RemoteSession) -> None:
        try:
            await session.close()
        except Exception:
            logger.warning("Error closing session for %s", self.folder.name, exc_info=True)

    def _prepare_local_dir(self) -> None:
        """Create the local subfolder up front; a failure surfaces per item."""
        try:
            self._store.ensure_dir(self.server.local_path, self.folder.name)
        except (LocalIOError, AccessDeniedError) as exc:
            self._log(f"Could not prepare local folder: {exc}", Severity.WARNING)

    async def _process_entry(self, session: RemoteSession, entry: RemoteEntry) -> IngestOutcome:
        if entry.kind == EntryKind.DIRECTORY:
            self._log(f"Skipping directory '{entry.name}'.")
            return SkippedDirectory(name=entry.name)

        if entry.kind != EntryKind.FILE:
            self._log(f"Skipping '{entry.name}': unknown entry type.", Severity.WARNING)
            return SkippedUnknown(name=entry.name)

        try:
            data = await session.fetch(entry.name)
            path = self._store.write(self.server.local_path, self.folder.name, entry.name, data)
        except (TransferError, LocalIOError, AccessDeniedError) as exc:
            self._log(f"Failed to download '{entry.name}': {exc}", Severity.ERROR)
            return DownloadFailed(name=entry.name, error=str(exc))

        self._log(f"Downloaded '{entry.name}' ({len(data)} bytes).", Severity.SUCCESS)
        return Downloaded(name=entry.name, size=len(data), path=str(path))

    def _record(self, outcome: IngestOutcome) -> None:
        if self._audit_log is None:
            return
        record = OutcomeRecord(
            timestamp=datetime.now(UTC),
            folder_id=self.folder.id,
            folder_name=self.folder.name,
            outcome=outcome,
        )
        try:
            self._audit_log.log(record)
        except OSError:
            logger.warning("Could not write outcome audit record", exc_info=True)
