"""One independent periodic timer per monitored folder.

Timers run as asyncio tasks on the caller's event loop. Each timer fires
an immediate first tick, then one tick per interval measured against the
loop clock (not chained to cycle completion). Each tick dispatches the
folder's cycle as its own task so folders never block one another.
"""

import asyncio
import logging

from sadis.integrations.ftp import RemoteSession
from sadis.monitor.audit import OutcomeAuditLog
from sadis.monitor.oplog import OperationLog
from sadis.monitor.worker import FolderWorker, SessionFactory
from sadis.schemas.ingest import AppConfig, CycleResult, MonitoredFolder, Severity
from sadis.storage.local_store import LocalStore

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0


class Scheduler:
    """Owns the active FolderWorkers and their timers.

    ``apply()`` and ``stop()`` must be called from within the running
    event loop that should drive the timers.
    """

    def __init__(
        self,
        *,
        oplog: OperationLog,
        store: LocalStore,
        session_factory: SessionFactory = RemoteSession,
        audit_log: OutcomeAuditLog | None = None,
        seconds_per_minute: float = SECONDS_PER_MINUTE,
    ) -> None:
        self._oplog = oplog
        self._store = store
        self._session_factory = session_factory
        self._audit_log = audit_log
        self._seconds_per_minute = seconds_per_minute
        self._workers: dict[str, FolderWorker] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._cycles: set[asyncio.Task] = set()
        self._active = False
        self._configuring = False

    @property
    def workers(self) -> dict[str, FolderWorker]:
        return dict(self._workers)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def configuring(self) -> bool:
        return self._configuring

    @property
    def timer_count(self) -> int:
        """Number of timers still scheduled."""
        return sum(1 for t in self._timers.values() if not t.done())

    @property
    def in_flight(self) -> int:
        return len(self._cycles)

    def apply(self, config: AppConfig, *, active: bool = True, start_timers: bool = True) -> None:
        """Tear down existing timers and start one per folder in ``config``.

        With ``start_timers=False`` the workers are built but nothing is
        scheduled; cycles then run only through ``run_once()``.
        """
        self._configuring = True
        try:
            self._cancel_timers()
            previous = self._workers
            self._workers = {
                folder.id: self._build_worker(folder, config, previous.get(folder.id))
                for folder in config.folders
            }
            self._active = active
            if not start_timers:
                return
            for folder_id, worker in self._workers.items():
                self._timers[folder_id] = asyncio.create_task(
                    self._run_timer(worker), name=f"timer:{worker.folder.name}"
                )
        finally:
            self._configuring = False

        logger.info("Scheduled %d folder timer(s) on %s", len(self._timers), config.server.host)
        self._oplog.append(
            f"Monitoring {len(self._workers)} folder(s) on {config.server.host}.", Severity.INFO
        )

    def stop(self) -> None:
        """Cancel every timer and close the gate. In-flight cycles are allowed to finish."""
        self._active = False
        cancelled = self._cancel_timers()
        if cancelled:
            self._oplog.append(f"Monitoring stopped ({cancelled} timer(s) cancelled).", Severity.INFO)

    def set_active(self, active: bool) -> None:
        """Gate tick dispatch without discarding the configuration."""
        self._active = active
        state = "resumed" if active else "paused"
        self._oplog.append(f"Monitoring {state}.", Severity.INFO)

    async def wait_idle(self) -> None:
        """Wait for every in-flight cycle to finish."""
        while self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    async def run_once(self) -> list[CycleResult]:
        """Run one cycle for every folder concurrently, ignoring the gate.

        Folders whose previous cycle is still running are skipped.
        """
        results = await asyncio.gather(*(w.tick() for w in self._workers.values()))
        return [r for r in results if r is not None]

    def _build_worker(
        self, folder: MonitoredFolder, config: AppConfig, old: FolderWorker | None
    ) -> FolderWorker:
        """Keep an unchanged folder's worker; otherwise chain the new one to the old."""
        if old is not None and old.folder == folder and old.server == config.server:
            return old
        return FolderWorker(
            folder,
            config.server,
            oplog=self._oplog,
            store=self._store,
            session_factory=self._session_factory,
            audit_log=self._audit_log,
            previous=old,
        )

    def _cancel_timers(self) -> int:
        count = 0
        for task in self._timers.values():
            if not task.done():
                task.cancel()
                count += 1
        self._timers.clear()
        return count

    async def _run_timer(self, worker: FolderWorker) -> None:
        loop = asyncio.get_running_loop()
        period = worker.folder.interval * self._seconds_per_minute
        next_at = loop.time()
        while True:
            self._dispatch(worker)
            next_at += period
            now = loop.time()
            if next_at <= now:
                # Ticks missed during a stall are dropped, not replayed.
                next_at += period * ((now - next_at) // period + 1)
            await asyncio.sleep(next_at - now)

    def _dispatch(self, worker: FolderWorker) -> None:
        if not self._active:
            self._oplog.append(
                f"[{worker.folder.name}] Monitoring paused, skipping check.", Severity.INFO
            )
            return
        task = asyncio.create_task(worker.tick(), name=f"cycle:{worker.folder.name}")
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
