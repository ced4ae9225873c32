"""CLI entry point.

Provides commands for:
- serve: Run the API server
- test-connection: Check the stored openHAB connection
- items: List numeric openHAB items and whether they are mapped
- sync: Run one manual sync pass
- history: Show recent sync log entries
- watch: Follow live item states without writing them
"""

import asyncio
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from twinsync.logging_config import configure_logging
from twinsync.settings import get_settings

app = typer.Typer(
    name="twinsync",
    help="openHAB item discovery, sensor mapping and live sync",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

OwnerOption = Annotated[
    Optional[str],  # noqa: UP007
    typer.Option("--owner", "-o", help="Owner id (defaults to TWINSYNC default owner)"),
]


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],  # noqa: UP007
        typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    ] = None,
) -> None:
    configure_logging(log_level.upper() if log_level else None)  # type: ignore[arg-type]


@app.command()
def serve(
    host: Annotated[
        str,
        typer.Option("--host", "-h", help="Host to bind to"),
    ] = "",
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to bind to"),
    ] = 0,
    reload: Annotated[
        bool,
        typer.Option("--reload", "-r", help="Enable auto-reload for development"),
    ] = False,
) -> None:
    """Start the twinsync API server.

    Defaults are loaded from settings (env vars / .env).
    """
    import uvicorn

    settings = get_settings()
    resolved_host = host or settings.api_host
    resolved_port = port or settings.api_port

    console.print(
        Panel(
            f"[bold green]Starting twinsync API Server[/bold green]\n"
            f"Host: {resolved_host}\n"
            f"Port: {resolved_port}\n"
            f"Role: {settings.twinsync_role}\n"
            f"Reload: {reload}",
            title="twinsync",
            border_style="green",
        )
    )

    uvicorn.run(
        "twinsync.api.main:get_app",
        factory=True,
        host=resolved_host,
        port=resolved_port,
        reload=reload,
        log_level="info",
    )


@app.command("test-connection")
def test_connection(owner: OwnerOption = None) -> None:
    """Test the stored openHAB connection."""
    asyncio.run(_test_connection(owner or get_settings().default_owner_id))


async def _load_connection(owner_id: str):
    """Return (config, credential) for an owner, or exit with a message."""
    from twinsync.dal.connection_configs import ConnectionConfigStore
    from twinsync.exceptions import NotFoundError
    from twinsync.storage import get_session

    async with get_session() as session:
        store = ConnectionConfigStore(session)
        try:
            config = await store.load(owner_id)
        except NotFoundError:
            console.print(f"[yellow]No openHAB connection saved for owner '{owner_id}'.[/yellow]")
            raise typer.Exit(code=1) from None
        return config, store.credential_for(config)


def _client(base_url: str, credential):
    from twinsync.openhab.client import OpenHABClient

    return OpenHABClient(base_url, credential, timeout=get_settings().openhab_timeout_seconds)


async def _test_connection(owner_id: str) -> None:
    config, credential = await _load_connection(owner_id)

    async with _client(config.base_url, credential) as client:
        result = await client.test_connection()

    if result.success:
        console.print(f"[green]{result.message}[/green]")
    else:
        console.print(f"[red]{result.message}[/red]")
        raise typer.Exit(code=1)


@app.command()
def items(
    owner: OwnerOption = None,
    all_types: Annotated[
        bool,
        typer.Option("--all", "-a", help="Include non-numeric items"),
    ] = False,
) -> None:
    """List openHAB items and whether they are mapped."""
    asyncio.run(_list_items(owner or get_settings().default_owner_id, all_types))


async def _list_items(owner_id: str, all_types: bool) -> None:
    from twinsync.dal.mappings import SensorMappingRepository
    from twinsync.exceptions import OpenHABConnectionError
    from twinsync.storage import get_session

    config, credential = await _load_connection(owner_id)

    async with get_session() as session:
        mapped = await SensorMappingRepository(session).mapped_item_names(config.id)

    try:
        async with _client(config.base_url, credential) as client:
            found = await client.list_items(sensor_only=not all_types)
    except OpenHABConnectionError as e:
        console.print(f"[red]Could not list items ({e.kind}): {e}[/red]")
        raise typer.Exit(code=1) from None

    if not found:
        console.print("[yellow]No items found.[/yellow]")
        return

    table = Table(title=f"openHAB Items ({len(found)})", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Label")
    table.add_column("Type")
    table.add_column("State", justify="right")
    table.add_column("Mapped", justify="center")

    for item in found:
        table.add_row(
            item.name,
            item.display_name,
            item.declared_type,
            item.state or "",
            "[green]yes[/green]" if item.name in mapped else "[dim]no[/dim]",
        )

    console.print(table)


@app.command()
def sync(owner: OwnerOption = None) -> None:
    """Run one manual sync pass now."""
    asyncio.run(_sync(owner or get_settings().default_owner_id))


async def _sync(owner_id: str) -> None:
    from twinsync.storage.entities import SyncType
    from twinsync.sync.engine import SyncStatus, get_sync_engine

    config, _ = await _load_connection(owner_id)

    with console.status("Syncing openHAB items..."):
        result = await get_sync_engine().sync_once(config, SyncType.MANUAL)

    colors = {
        SyncStatus.SUCCESS: "green",
        SyncStatus.PARTIAL: "yellow",
        SyncStatus.NOOP: "dim",
    }
    color = colors.get(result.status, "red")
    console.print(f"[{color}]{result.status}: {result.message}[/{color}]")
    for error in result.errors:
        console.print(f"  [dim]- {error}[/dim]")

    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def history(
    owner: OwnerOption = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Number of entries to show"),
    ] = 0,
) -> None:
    """Show recent sync log entries."""
    settings = get_settings()
    asyncio.run(_history(owner or settings.default_owner_id, limit or settings.sync_history_limit))


async def _history(owner_id: str, limit: int) -> None:
    from twinsync.dal.sync_logs import SyncLogRepository
    from twinsync.storage import get_session

    config, _ = await _load_connection(owner_id)

    async with get_session() as session:
        logs = await SyncLogRepository(session).list_recent(config.id, limit=limit)

        # Extract data while session is active
        rows = [
            (
                log.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                log.sync_type,
                log.status,
                f"{log.items_synced}/{log.items_total}",
                log.error_message or "",
            )
            for log in logs
        ]

    if not rows:
        console.print("[yellow]No syncs recorded yet.[/yellow]")
        return

    table = Table(title="Sync History", show_header=True)
    table.add_column("When", style="cyan")
    table.add_column("Type")
    table.add_column("Status", justify="center")
    table.add_column("Synced", justify="right")
    table.add_column("Errors", overflow="fold")

    status_colors = {"success": "green", "partial": "yellow", "error": "red"}
    for when, sync_type, status, synced, errors in rows:
        color = status_colors.get(status, "dim")
        table.add_row(when, sync_type, f"[{color}]{status}[/{color}]", synced, errors)

    console.print(table)


@app.command()
def watch(
    owner: OwnerOption = None,
    interval: Annotated[
        int,
        typer.Option("--interval", "-i", help="Refresh interval in seconds"),
    ] = 0,
) -> None:
    """Follow live openHAB item states (read-only). Ctrl+C to stop."""
    settings = get_settings()
    try:
        asyncio.run(
            _watch(owner or settings.default_owner_id, interval or settings.live_feed_interval_seconds)
        )
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


def _render_items(feed) -> Table:
    updated = feed.last_updated.strftime("%H:%M:%S") if feed.last_updated else "never"
    table = Table(title=f"Live openHAB Items (updated {updated})", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Label")
    table.add_column("State", justify="right")

    for item in feed.items:
        table.add_row(item.name, item.display_name, item.state or "")

    if feed.last_error is not None:
        table.caption = f"[red]Last refresh failed: {feed.last_error}[/red]"
    return table


async def _watch(owner_id: str, interval: int) -> None:
    from twinsync.sync.feed import LiveFeed

    config, credential = await _load_connection(owner_id)

    async with _client(config.base_url, credential) as client:
        with Live(console=console, refresh_per_second=2) as live:
            feed = LiveFeed(
                client.list_items,
                interval=interval,
                on_update=lambda f: live.update(_render_items(f)),
            )
            live.update(_render_items(feed))
            async with feed:
                # Redraw between refreshes so fetch errors show up too
                while True:
                    await asyncio.sleep(1)
                    live.update(_render_items(feed))
