"""Engine facade: the owned context collaborators hold a handle to.

Bundles the ConfigStore, OperationLog, LocalStore and Scheduler, and
exposes the collaborator-facing actions (submit config, toggle
monitoring, read status and per-folder outcomes).

Usage::

    engine = IngestEngine()
    response = engine.submit_config(config_dict)   # inside a running loop
    snapshot = engine.get_status()
    ...
    await engine.shutdown()
"""

import functools
import logging
from pathlib import Path

from pydantic import ValidationError

from sadis.integrations.ftp import DEFAULT_TIMEOUT, RemoteSession
from sadis.monitor.audit import OutcomeAuditLog
from sadis.monitor.config_store import ConfigStore
from sadis.monitor.oplog import DEFAULT_CAPACITY, OperationLog
from sadis.monitor.scheduler import SECONDS_PER_MINUTE, Scheduler
from sadis.monitor.worker import SessionFactory
from sadis.schemas.ingest import (
    ActionResponse,
    AppConfig,
    AppStatus,
    CycleResult,
    IngestOutcome,
    Severity,
    StatusSnapshot,
    WorkerState,
)
from sadis.storage.local_store import LocalStore

logger = logging.getLogger(__name__)


def _error_details(exc: ValidationError) -> dict[str, list[str]]:
    """Flatten pydantic errors into ``{"server.port": ["..."]}``."""
    details: dict[str, list[str]] = {}
    for err in exc.errors():
        key = ".".join(str(part) for part in err["loc"]) or "config"
        details.setdefault(key, []).append(err["msg"])
    return details


class IngestEngine:
    """Process-wide ingestion context.

    ``submit_config``, ``toggle_monitoring`` and ``shutdown`` start or
    cancel asyncio tasks and must run inside the event loop.
    """

    def __init__(
        self,
        *,
        log_capacity: int = DEFAULT_CAPACITY,
        store: LocalStore | None = None,
        session_factory: SessionFactory | None = None,
        audit_log: OutcomeAuditLog | None = None,
        connect_timeout: float = DEFAULT_TIMEOUT,
        seconds_per_minute: float = SECONDS_PER_MINUTE,
    ) -> None:
        self.oplog = OperationLog(log_capacity)
        self.config_store = ConfigStore()
        self.store = store or LocalStore()
        if session_factory is None:
            session_factory = functools.partial(RemoteSession, timeout=connect_timeout)
        self.scheduler = Scheduler(
            oplog=self.oplog,
            store=self.store,
            session_factory=session_factory,
            audit_log=audit_log,
            seconds_per_minute=seconds_per_minute,
        )

    # --- Actions ---

    def submit_config(self, data: AppConfig | dict, *, start: bool = True) -> ActionResponse:
        """Validate and apply a new configuration.

        On success the previous config is replaced, the root local path is
        created, and every folder timer is restarted. With ``start=False``
        workers are built but no timers run (for ``run_once``).
        """
        try:
            config = data if isinstance(data, AppConfig) else AppConfig.model_validate(data)
        except ValidationError as exc:
            logger.warning("Configuration rejected: %s", exc)
            self.oplog.append("Validation failed. Please check your inputs.", Severity.ERROR)
            return ActionResponse(
                success=False,
                message="Validation failed. Please check your inputs.",
                error_details=_error_details(exc),
            )

        self.config_store.replace(config)
        self._ensure_root(config)
        self.scheduler.apply(config, active=start, start_timers=start)

        message = (
            "Configuration applied. Monitoring started."
            if start
            else "Configuration applied. Monitoring not started."
        )
        self.oplog.append(message, Severity.SUCCESS)
        return ActionResponse(success=True, message=message, config=config)

    def toggle_monitoring(self, start: bool) -> ActionResponse:
        """Start or stop tick dispatch without discarding the configuration."""
        config = self.config_store.current
        if start and config is None:
            message = "Cannot start monitoring. Configuration is missing."
            self.oplog.append(message, Severity.WARNING)
            return ActionResponse(success=False, message=message)

        if start and config is not None and self.scheduler.timer_count == 0:
            self.scheduler.apply(config, active=True)
        else:
            self.scheduler.set_active(start)

        message = "Monitoring started." if start else "Monitoring stopped."
        return ActionResponse(success=True, message=message, config=config)

    async def run_once(self) -> list[CycleResult]:
        """Run one cycle for every configured folder, ignoring the monitoring gate."""
        if self.config_store.current is None:
            self.oplog.append("No configuration to run.", Severity.WARNING)
            return []
        return await self.scheduler.run_once()

    async def shutdown(self) -> None:
        """Cancel every timer and wait for in-flight cycles to finish."""
        self.scheduler.stop()
        await self.scheduler.wait_idle()

    # --- Queries ---

    def get_status(self) -> StatusSnapshot:
        return StatusSnapshot(
            status=self._derive_status(),
            monitoring=self.scheduler.active,
            config=self.config_store.current,
            logs=self.oplog.snapshot(),
        )

    def last_result(self, folder_id: str) -> CycleResult | None:
        worker = self.scheduler.workers.get(folder_id)
        return worker.last_result if worker else None

    def last_outcomes(self, folder_id: str) -> list[IngestOutcome]:
        """Per-item outcomes of the most recent cycle for one folder."""
        worker = self.scheduler.workers.get(folder_id)
        return worker.last_outcomes if worker else []

    def _derive_status(self) -> AppStatus:
        if self.scheduler.configuring:
            return AppStatus.CONFIGURING
        if self.config_store.current is None:
            return AppStatus.IDLE

        workers = self.scheduler.workers.values()
        states = {w.state for w in workers}
        if WorkerState.CONNECTING in states:
            return AppStatus.CONNECTING
        if states & {WorkerState.LISTING, WorkerState.PROCESSING}:
            return AppStatus.TRANSFERRING

        results = [w.last_result for w in workers if w.last_result is not None]
        latest = max(results, key=lambda r: r.finished_at) if results else None
        if latest is not None and not latest.success:
            return AppStatus.ERROR
        if self.scheduler.active:
            return AppStatus.MONITORING
        return AppStatus.SUCCESS if latest is not None else AppStatus.IDLE

    def _ensure_root(self, config: AppConfig) -> None:
        root = Path(config.server.local_path)
        try:
            root.resolve().mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self.oplog.append(
                f"Could not create root local path {root}: {exc}", Severity.WARNING
            )
