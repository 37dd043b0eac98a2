"""CLI entry point for the SADIS FTP ingestion engine.

Commands:
    sadis run       — monitor every configured folder until interrupted
    sadis once      — run one check of every folder and exit
    sadis validate  — validate a config file
    sadis status    — show local files per folder and recent outcomes
"""

import asyncio
import json
import logging
import sys

import click
from pydantic import ValidationError

from sadis.config import (
    APP_CONFIG_PATH,
    CONNECT_TIMEOUT,
    FTP_PASSWORD,
    LOG_CAPACITY,
    OUTCOME_AUDIT_PATH,
    load_app_config,
)
from sadis.schemas.ingest import AppConfig

logger = logging.getLogger("sadis")


def _load_config_or_exit(config_path: str, password: str) -> AppConfig:
    """Fail loudly if the config file is missing or invalid."""
    if not config_path:
        click.echo("Error: --config is required (or set SADIS_CONFIG_PATH).", err=True)
        sys.exit(1)
    try:
        return load_app_config(config_path, password=password or None)
    except FileNotFoundError:
        click.echo(f"Error: Config file does not exist: {config_path}", err=True)
        sys.exit(1)
    except json.JSONDecodeError as exc:
        click.echo(f"Error: Config file is not valid JSON: {exc}", err=True)
        sys.exit(1)
    except ValidationError as exc:
        click.echo(f"Error: Invalid configuration in {config_path}:", err=True)
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "config"
            click.echo(f"  {loc}: {err['msg']}", err=True)
        sys.exit(1)


def _build_engine(audit_path: str):
    from sadis.engine import IngestEngine
    from sadis.monitor.audit import OutcomeAuditLog

    audit_log = OutcomeAuditLog(audit_path) if audit_path else None
    return IngestEngine(
        log_capacity=LOG_CAPACITY,
        audit_log=audit_log,
        connect_timeout=CONNECT_TIMEOUT,
    )


config_option = click.option(
    "--config",
    "config_path",
    default=APP_CONFIG_PATH,
    show_default=True,
    help="JSON file with the server and monitored folders.",
)
password_option = click.option(
    "--password",
    default=FTP_PASSWORD,
    help="FTP password (overrides the config file; or set SADIS_FTP_PASSWORD).",
)
audit_option = click.option(
    "--audit-log",
    "audit_path",
    default=OUTCOME_AUDIT_PATH,
    show_default=True,
    help="JSONL file recording every per-item outcome ('' to disable).",
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """SADIS — mirror remote FTP folders into a local directory tree."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# sadis validate
# ------------------------------------------------------------------


@cli.command()
@config_option
def validate(config_path: str) -> None:
    """Validate a config file and summarize it."""
    config = _load_config_or_exit(config_path, "")
    server = config.server
    click.echo(f"Server: {server.username}@{server.host}:{server.port}")
    click.echo(f"Local root: {server.local_path}")
    click.echo(f"Folders ({len(config.folders)}):")
    for folder in config.folders:
        click.echo(f"  {folder.name:<20} {folder.remote_path}  every {folder.interval} min")


# ------------------------------------------------------------------
# sadis once
# ------------------------------------------------------------------


@cli.command()
@config_option
@password_option
@audit_option
def once(config_path: str, password: str, audit_path: str) -> None:
    """Check every folder once and exit (exit code 1 if any check failed)."""
    config = _load_config_or_exit(config_path, password)
    failed = asyncio.run(_once_async(config, audit_path))
    if failed:
        sys.exit(1)


async def _once_async(config: AppConfig, audit_path: str) -> int:
    engine = _build_engine(audit_path)
    engine.submit_config(config, start=False)
    results = await engine.run_once()

    failed = 0
    for result in results:
        click.echo(
            f"{result.folder_name}: {result.status.value}  "
            f"Downloaded: {result.downloaded}  Failed: {result.failed}  Skipped: {result.skipped}"
        )
        if not result.success:
            failed += 1
            click.echo(f"  ERROR: {result.error}", err=True)
        for outcome in result.outcomes:
            if outcome.kind == "download_failed":
                click.echo(f"  {outcome.name}: {outcome.error}", err=True)
    return failed


# ------------------------------------------------------------------
# sadis run
# ------------------------------------------------------------------


@cli.command()
@config_option
@password_option
@audit_option
def run(config_path: str, password: str, audit_path: str) -> None:
    """Monitor every configured folder on its own interval (Ctrl+C to stop)."""
    config = _load_config_or_exit(config_path, password)
    try:
        asyncio.run(_run_async(config, audit_path))
    except KeyboardInterrupt:
        pass
    click.echo("Monitoring stopped.")


async def _run_async(config: AppConfig, audit_path: str) -> None:
    engine = _build_engine(audit_path)
    response = engine.submit_config(config)
    click.echo(response.message)
    for folder in config.folders:
        click.echo(f"  {folder.name}: {folder.remote_path} every {folder.interval} min")

    try:
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        await engine.shutdown()


# ------------------------------------------------------------------
# sadis status
# ------------------------------------------------------------------


@cli.command()
@config_option
@audit_option
@click.option("--hours", default=24, show_default=True, help="Window for recent outcome counts.")
def status(config_path: str, audit_path: str, hours: int) -> None:
    """Show mirrored files per folder and recent outcome counts."""
    from datetime import UTC, datetime, timedelta

    from sadis.errors import IngestError
    from sadis.monitor.audit import OutcomeAuditLog
    from sadis.storage.local_store import LocalStore

    config = _load_config_or_exit(config_path, "")
    store = LocalStore()

    click.echo(f"SADIS Status ({config.server.local_path})")
    for folder in config.folders:
        try:
            files = store.list_folder(config.server.local_path, folder.name)
        except IngestError as exc:
            click.echo(f"  {folder.name}: ERROR {exc}", err=True)
            continue
        total = sum(f.size for f in files)
        click.echo(f"  {folder.name:<20} {len(files)} file(s), {total} bytes")

    if audit_path:
        since = datetime.now(UTC) - timedelta(hours=hours)
        records = OutcomeAuditLog(audit_path).read_entries(since=since)
        downloaded = sum(1 for r in records if r.outcome.kind == "downloaded")
        failed = sum(1 for r in records if r.outcome.kind == "download_failed")
        click.echo(f"  Downloaded ({hours}h):    {downloaded}")
        click.echo(f"  Failed ({hours}h):        {failed}")
