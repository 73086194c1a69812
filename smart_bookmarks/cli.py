"""
CLI commands for smart-bookmarks.

Provides the `smart-bookmarks` command-line interface for checking the
backend, listing, adding and deleting bookmarks, and running an
in-process synchronization demo.
"""

import asyncio
import logging
import sys
from typing import Iterable, Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.markup import escape

from config.loader import ConfigurationLoader
from core.models.bookmarks import Bookmark, sort_bookmarks
from core.models.config import GlobalSettings, SyncConfig
from core.sync.auth import AuthGate
from core.sync.engine import SyncEngine
from core.sync.feed import ChangeFeedClient, RetryConfig
from core.sync.gateway import MutationGateway
from smart_bookmarks import __version__
from smart_bookmarks.backend.memory import InMemoryBookmarkBackend, InMemoryChangeChannel
from smart_bookmarks.backend.rest import RestBookmarkBackend

console = Console()
logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _configure_logging(level: str, settings: GlobalSettings) -> None:
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(getattr(logging, level))

    log_file = settings.get_log_file()
    if log_file and not any(isinstance(h, logging.FileHandler) for h in root.handlers):
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)


@click.group()
@click.version_option(version=__version__, prog_name="smart-bookmarks")
@click.option(
    '--config', 'config_path',
    type=click.Path(dir_okay=False),
    default=None,
    help='Configuration file (default: ~/.smart-bookmarks/config.json)'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    default=None,
    help='Logging level (default: SMART_BOOKMARKS_LOG_LEVEL or INFO)'
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]):
    """
    Smart Bookmarks CLI.

    Manage a user's bookmarks and watch them stay in sync in real time.
    """
    settings = GlobalSettings()
    level = (log_level or settings.log_level).upper()
    _configure_logging(level, settings)

    loader = ConfigurationLoader(settings)
    ctx.obj = {
        "settings": settings,
        "config": loader.load_config(config_path),
    }


def _create_backend(config: SyncConfig) -> RestBookmarkBackend:
    return RestBookmarkBackend(config.backend)


def _bookmark_table(bookmarks: Iterable[Bookmark], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Created", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("URL", style="blue")
    table.add_column("ID", style="dim")

    for bookmark in bookmarks:
        table.add_row(
            bookmark.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            escape(bookmark.title),
            escape(bookmark.url),
            escape(bookmark.id)
        )
    return table


def _print_bookmarks(bookmarks: Iterable[Bookmark], title: str) -> None:
    bookmarks = list(bookmarks)
    if not bookmarks:
        console.print(f"[dim]{escape(title)}: no bookmarks[/dim]")
        return
    console.print(_bookmark_table(bookmarks, escape(title)))


@main.command()
@click.pass_obj
def status(obj: dict):
    """Show configuration and backend reachability."""
    config: SyncConfig = obj["config"]
    settings: GlobalSettings = obj["settings"]

    console.print("[blue]🔍 Checking smart-bookmarks status...[/blue]\n")

    table = Table(title="Smart Bookmarks Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Config directory", str(settings.config_dir))
    table.add_row("Backend URL", config.backend.url)
    table.add_row("Table", config.backend.table)
    table.add_row("Channel", f"{config.channel_name} ({config.schema_name})")
    table.add_row("API key", "set" if config.backend.api_key else "not set")
    table.add_row("Reconnect attempts", str(config.retry.max_attempts))
    table.add_row("Max reconnect delay", f"{config.retry.max_delay:.1f}s")
    table.add_row("Queue size", str(config.max_queue_size))
    table.add_row("Tombstone TTL", f"{config.tombstone_ttl_seconds:.1f}s")

    backend = _create_backend(config)
    try:
        reachable = asyncio.run(backend.health_check())
    finally:
        backend.close()

    table.add_row(
        "Backend",
        "[green]✅ reachable[/green]" if reachable else "[red]❌ unreachable[/red]"
    )
    console.print(table)


@main.command(name="list")
@click.option('--user-id', required=True, help='Owner whose bookmarks are listed')
@click.pass_obj
def list_bookmarks(obj: dict, user_id: str):
    """List a user's bookmarks, newest first."""
    config: SyncConfig = obj["config"]
    backend = _create_backend(config)
    try:
        result = asyncio.run(MutationGateway(backend).fetch_all(user_id))
    finally:
        backend.close()

    if not result.success:
        console.print(f"[red]❌ Failed to fetch bookmarks: {escape(result.error or '')}[/red]")
        sys.exit(1)

    _print_bookmarks(sort_bookmarks(result.data), f"Bookmarks for {user_id}")


@main.command()
@click.argument('title')
@click.argument('url')
@click.option('--user-id', required=True, help='Owner of the new bookmark')
@click.pass_obj
def add(obj: dict, title: str, url: str, user_id: str):
    """Add a bookmark."""
    config: SyncConfig = obj["config"]
    backend = _create_backend(config)
    try:
        result = asyncio.run(MutationGateway(backend).create(title, url, user_id))
    finally:
        backend.close()

    if not result.success:
        console.print(f"[red]❌ Could not add bookmark ({result.error_code}): {escape(result.error or '')}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Added {escape(str(result.data))}[/green]")


@main.command()
@click.argument('bookmark_id')
@click.pass_obj
def delete(obj: dict, bookmark_id: str):
    """Delete a bookmark by id."""
    config: SyncConfig = obj["config"]
    backend = _create_backend(config)
    try:
        result = asyncio.run(MutationGateway(backend).delete(bookmark_id))
    finally:
        backend.close()

    if not result.success:
        console.print(f"[red]❌ Could not delete bookmark ({result.error_code}): {escape(result.error or '')}[/red]")
        sys.exit(1)

    console.print(f"[green]🗑️  Deleted {escape(bookmark_id)}[/green]")


@main.command()
@click.option('--user-id', default="demo-user", help='Identity used for the demo session')
@click.pass_obj
def demo(obj: dict, user_id: str):
    """Run a complete in-process sync session."""
    config: SyncConfig = obj["config"]

    console.print(Panel(
        "In-process backend and push channel.\n"
        "Creates and deletes become visible only when their change event arrives.",
        title="🔄 Smart Bookmarks sync demo"
    ))

    ok = asyncio.run(_run_demo(config, user_id))
    if not ok:
        sys.exit(1)


async def _run_demo(config: SyncConfig, user_id: str) -> bool:
    channel = InMemoryChangeChannel()
    backend = InMemoryBookmarkBackend(channel=channel, table=config.backend.table, schema_name=config.schema_name)

    # Fast reconnects keep the demo short
    retry_config = RetryConfig(
        max_attempts=config.retry.max_attempts,
        initial_delay=0.05,
        max_delay=0.5,
        jitter=False
    )
    feed = ChangeFeedClient(channel, retry_config=retry_config)
    engine = SyncEngine(MutationGateway(backend), feed, config)
    auth = AuthGate(engine)
    timeout = config.settle_timeout

    def has(bookmark_id: str):
        return lambda snapshot: any(b.id == bookmark_id for b in snapshot)

    def lacks(bookmark_id: str):
        return lambda snapshot: all(b.id != bookmark_id for b in snapshot)

    logger.info(f"Starting demo session for {user_id}")
    try:
        async with engine:
            started = await auth.sign_in(user_id)
            if not started.success:
                console.print(f"[red]❌ Session failed to start: {escape(started.error or '')}[/red]")
                return False
            _print_bookmarks(engine.get_snapshot(), f"Signed in as {user_id}")

            created = []
            for title, url in (
                ("Python docs", "https://docs.python.org/3/"),
                ("asyncio", "https://docs.python.org/3/library/asyncio.html"),
                ("PyPI", "https://pypi.org/"),
            ):
                result = await engine.request_create(title, url)
                if not result.success:
                    console.print(f"[red]❌ Create failed: {escape(result.error or '')}[/red]")
                    return False
                if not await engine.wait_for_snapshot(has(result.data.id), timeout):
                    console.print(f"[red]❌ Created event for {escape(title)} never arrived[/red]")
                    return False
                created.append(result.data)
            _print_bookmarks(engine.get_snapshot(), "After three creates (feed-confirmed)")

            result = await engine.request_delete(created[0].id)
            if not result.success:
                console.print(f"[red]❌ Delete failed: {escape(result.error or '')}[/red]")
                return False
            if not await engine.wait_for_snapshot(lacks(created[0].id), timeout):
                console.print("[red]❌ Deleted event never arrived[/red]")
                return False
            _print_bookmarks(engine.get_snapshot(), f"After deleting '{created[0].title}'")

            console.print("[yellow]⚡ Dropping the push channel; the next delete is missed[/yellow]")
            channel.disconnect_all("simulated network drop")
            await backend.delete(created[1].id)

            recovered = await engine.wait_for_snapshot(lacks(created[1].id), timeout)
            if not recovered:
                console.print("[red]❌ Resnapshot did not recover the missed delete[/red]")
                return False
            _print_bookmarks(engine.get_snapshot(), "After reconnect and resnapshot")

            status_info = engine.get_status()
            console.print(
                f"[green]✅ Demo complete:[/green] {status_info['resubscriptions']} resubscription(s), "
                f"{status_info['snapshots_completed']} snapshot(s), "
                f"{status_info['events_applied']} event(s) applied"
            )

            await auth.sign_out()
    finally:
        await feed.close()

    return True


if __name__ == "__main__":
    main()
