"""CLI entry point for maintenance tasks."""

import asyncio
import json
import sys

import click
from cryptography.fernet import Fernet

from safetrust.core.config import settings
from safetrust.core.logging import get_logger, setup_logging
from safetrust.offline import ActionStatus, ConnectivityMonitor, OfflineQueue, OfflineStore, RemoteAPI

logger = get_logger(__name__)


def _build_queue(db_path: str | None, online: bool, token: str | None = None) -> OfflineQueue:
    store = OfflineStore(
        db_path or settings.OFFLINE_DB_PATH,
        retry_backoff_seconds=settings.OFFLINE_RETRY_BACKOFF_SECONDS,
    )
    return OfflineQueue(
        store,
        RemoteAPI(token=token),
        ConnectivityMonitor(online=online, probe_url=settings.OFFLINE_CONNECTIVITY_PROBE_URL),
        sync_interval=0,
    )


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        click.echo(f"Command failed: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--log-level", default="WARNING", show_default=True, help="Log level for this run.")
def cli(log_level: str) -> None:
    """Safety Management trust and sync maintenance commands."""
    setup_logging(log_level, stream=sys.stderr)


@cli.group()
def offline() -> None:
    """Inspect and drive the device action queue."""


@offline.command("status")
@click.option("--db", "db_path", default=None, help="Device database path.")
def offline_status(db_path: str | None) -> None:
    """Print the queue status as JSON."""

    async def run_async():
        queue = _build_queue(db_path, online=False)
        await queue.store.open()
        try:
            status = await queue.get_status()
            click.echo(status.model_dump_json(indent=2))
        finally:
            await queue.remote.aclose()
            await queue.store.close()

    _run(run_async())


@offline.command("list")
@click.option("--db", "db_path", default=None, help="Device database path.")
@click.option(
    "--status",
    type=click.Choice([s.value for s in ActionStatus]),
    default=None,
    help="Only list actions in this state.",
)
def offline_list(db_path: str | None, status: str | None) -> None:
    """List queued actions."""
    from safetrust.schemas.offline import OfflineActionRecord

    async def run_async():
        store = OfflineStore(db_path or settings.OFFLINE_DB_PATH)
        await store.open()
        try:
            actions = await store.list_actions(ActionStatus(status) if status else None)
            rows = [OfflineActionRecord.model_validate(a).model_dump(mode="json") for a in actions]
            click.echo(json.dumps(rows, indent=2))
        finally:
            await store.close()

    _run(run_async())


@offline.command("flush")
@click.option("--db", "db_path", default=None, help="Device database path.")
@click.option("--token", envvar="OFFLINE_API_TOKEN", default=None, help="Bearer token for the API.")
def offline_flush(db_path: str | None, token: str | None) -> None:
    """
    Replay pending actions against the API once.

    Example:
        python -m safetrust.cli offline flush --db sms_offline.db
    """

    async def run_async():
        queue = _build_queue(db_path, online=True, token=token)
        await queue.store.open()
        try:
            if settings.OFFLINE_CONNECTIVITY_PROBE_URL and not await queue.connectivity.probe():
                click.echo("API unreachable, nothing flushed", err=True)
                sys.exit(2)
            result = await queue.flush()
            click.echo(f"Flush completed: {result.model_dump()}")
        finally:
            await queue.remote.aclose()
            await queue.store.close()

    _run(run_async())


@offline.command("purge")
@click.option("--db", "db_path", default=None, help="Device database path.")
@click.option("--all-cache", is_flag=True, help="Also drop cached entity snapshots.")
def offline_purge(db_path: str | None, all_cache: bool) -> None:
    """Delete completed actions (and optionally the cache)."""

    async def run_async():
        store = OfflineStore(db_path or settings.OFFLINE_DB_PATH)
        await store.open()
        try:
            if all_cache:
                await store.clear_cache()
                click.echo("Cache and completed actions cleared")
            else:
                purged = await store.purge_completed()
                click.echo(f"Purged {purged} completed actions")
        finally:
            await store.close()

    _run(run_async())


@cli.group()
def mfa() -> None:
    """MFA key management."""


@mfa.command("generate-key")
def mfa_generate_key() -> None:
    """Print a new value for MFA_ENCRYPTION_KEY."""
    click.echo(Fernet.generate_key().decode())


if __name__ == "__main__":
    cli()
