"""vidkeep command line interface."""

import logging
import signal
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import observability
from .classifier import classify
from .config import Config
from .database import init_db
from .defaults import ensure_config
from .extractor import YtDlpExtractor
from .jobs import InlineJobQueue, JobQueue
from .locking import DaemonAlreadyRunning, acquire_daemon_lock
from .media import MediaStore
from .models import DownloadStatus, SyncStatus
from .notifier import ITEMS_TOPIC, Event, Notifier
from .orchestrator import ItemFetchOrchestrator, SourceSyncOrchestrator
from .storage import Storage

app = typer.Typer(
    name="vidkeep",
    help="vidkeep - Track YouTube channels and playlists and download their videos",
    add_completion=False,
)
console = Console()

SYNC_STYLES = {
    SyncStatus.DONE: "green",
    SyncStatus.ENQUEUED: "yellow",
    SyncStatus.SYNCING: "cyan",
    SyncStatus.FAILED: "red",
}

DOWNLOAD_STYLES = {
    DownloadStatus.PENDING: "dim",
    DownloadStatus.QUEUED: "yellow",
    DownloadStatus.DOWNLOADING: "cyan",
    DownloadStatus.COMPLETED: "green",
    DownloadStatus.FAILED: "red",
}


@dataclass
class Runtime:
    """Wired components for one command or daemon run."""

    config: Config
    storage: Storage
    notifier: Notifier
    jobs: JobQueue | InlineJobQueue
    items: ItemFetchOrchestrator
    sources: SourceSyncOrchestrator


def build_runtime(config: Config, jobs: JobQueue | InlineJobQueue) -> Runtime:
    """Create storage, extractor and orchestrators from configuration."""
    init_db(config.db_path)
    observability.configure(config.observability_dir)

    storage = Storage(config.db_path)
    extractor = YtDlpExtractor.from_config(config)
    media = MediaStore(config.media_dir)
    notifier = Notifier()

    items = ItemFetchOrchestrator(
        storage=storage,
        extractor=extractor,
        jobs=jobs,
        notifier=notifier,
        media=media,
    )
    sources = SourceSyncOrchestrator(
        storage=storage,
        extractor=extractor,
        jobs=jobs,
        notifier=notifier,
        items=items,
        media=media,
        locale=config.locale,
        console=console,
    )
    return Runtime(config, storage, notifier, jobs, items, sources)


def load_config(config_path: Optional[Path]) -> Config:
    """Load configuration, creating the default file on first use."""
    try:
        if config_path is None:
            config_path = ensure_config()
        return Config.from_file(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]❌ Configuration error: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)


def _inline_runtime(ctx: typer.Context) -> Runtime:
    return build_runtime(load_config(ctx.obj.get("config_path")), InlineJobQueue())


def _format_timestamp(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _format_duration(seconds: Optional[int]) -> str:
    if seconds is None:
        return "-"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}" if hours else f"{minutes}:{secs:02d}"


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config.toml"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Common options for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    ctx.obj = {"config_path": config_path}


@app.command()
def init(ctx: typer.Context) -> None:
    """Create the default configuration and database."""
    config_path = ensure_config(ctx.obj.get("config_path"))
    config = load_config(config_path)
    db_path = init_db(config.db_path)
    console.print(f"[green]✅ Config: {config_path}[/green]")
    console.print(f"[green]✅ Database: {db_path}[/green]")


@app.command(name="classify")
def classify_url(url: str = typer.Argument(..., help="URL to classify")) -> None:
    """Show what a URL points at (channel, playlist or video)."""
    info = classify(url)
    if info is None:
        console.print(f"[red]Not recognized: {url}[/red]")
        raise typer.Exit(code=1)
    console.print(f"{info.kind.value} [bold]{info.reference}[/bold]")


@app.command()
def add(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="YouTube channel or playlist URL"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Custom display name"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Custom description"),
    inactive: bool = typer.Option(False, "--inactive", help="Exclude from scheduled syncs"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Don't fetch metadata and items now"),
) -> None:
    """Subscribe to a channel or playlist."""
    runtime = _inline_runtime(ctx)
    try:
        source, is_new = runtime.sources.create_source(
            url, name=name, description=description, active=not inactive, sync=not no_sync
        )
    except ValueError as e:
        console.print(f"[bold red]❌ {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)
    finally:
        runtime.storage.close()

    if is_new:
        console.print(
            f"[green]✅ Added {source.kind.value} {source.name or source.reference} ({source.id})[/green]"
        )
    else:
        console.print(f"[yellow]Already subscribed: {source.name or source.reference} ({source.id})[/yellow]")


@app.command()
def sources(ctx: typer.Context) -> None:
    """List subscribed sources and their sync status."""
    runtime = _inline_runtime(ctx)
    try:
        all_sources = runtime.storage.get_all_sources()
        if not all_sources:
            console.print("[yellow]No sources yet. Add one with 'vidkeep add URL'.[/yellow]")
            return

        table = Table(title="Sources")
        table.add_column("ID", style="dim")
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Items", justify="right")
        table.add_column("Sync")
        table.add_column("Last checked")

        for source in all_sources:
            style = SYNC_STYLES[source.sync_status]
            status = f"[{style}]{source.sync_status.value}[/{style}]"
            if not source.active:
                status += " [dim](paused)[/dim]"
            table.add_row(
                source.id,
                source.kind.value,
                escape(source.name or source.reference),
                str(runtime.storage.count_items(source.id)),
                status,
                _format_timestamp(source.last_checked_at),
            )
        console.print(table)
    finally:
        runtime.storage.close()


@app.command()
def items(
    ctx: typer.Context,
    source_id: str = typer.Argument(..., help="Source ID"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum rows"),
) -> None:
    """List a source's items and their download status."""
    runtime = _inline_runtime(ctx)
    try:
        source = runtime.storage.get_source(source_id)
        if source is None:
            console.print(f"[bold red]❌ Source not found: {source_id}[/bold red]")
            raise typer.Exit(code=1)

        table = Table(title=escape(source.name or source.reference))
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Duration", justify="right")
        table.add_column("Uploaded")
        table.add_column("Download")

        for item in runtime.storage.get_items_for_source(source_id, limit=limit):
            style = DOWNLOAD_STYLES[item.download_status]
            table.add_row(
                item.id,
                escape(item.title or item.reference),
                _format_duration(item.duration),
                _format_timestamp(item.uploaded_at),
                f"[{style}]{item.download_status.value}[/{style}]",
            )
        console.print(table)
    finally:
        runtime.storage.close()


@app.command()
def sync(ctx: typer.Context, source_id: str = typer.Argument(..., help="Source ID")) -> None:
    """Discover a source's items now."""
    runtime = _inline_runtime(ctx)
    try:
        runtime.sources.request_sync(source_id)
        source = runtime.storage.get_source(source_id)
    except ValueError as e:
        console.print(f"[bold red]❌ {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)
    finally:
        runtime.storage.close()

    style = SYNC_STYLES[source.sync_status]
    console.print(f"Sync [{style}]{source.sync_status.value}[/{style}] for {source.name or source.reference}")
    if source.sync_status == SyncStatus.FAILED:
        raise typer.Exit(code=1)


@app.command(name="sync-all")
def sync_all(ctx: typer.Context) -> None:
    """Discover items for every active source."""
    runtime = _inline_runtime(ctx)
    try:
        queued = runtime.sources.request_scheduled_syncs()
    finally:
        runtime.storage.close()
    console.print(f"Synced {queued} source(s)")


@app.command()
def fetch(ctx: typer.Context, item_id: str = typer.Argument(..., help="Item ID")) -> None:
    """Download an item's video."""
    runtime = _inline_runtime(ctx)
    try:
        if not runtime.items.request_fetch(item_id):
            console.print("[yellow]Download already in progress[/yellow]")
            return
        item = runtime.storage.get_item(item_id)
    except ValueError as e:
        console.print(f"[bold red]❌ {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)
    finally:
        runtime.storage.close()

    if item.download_status == DownloadStatus.COMPLETED:
        console.print(f"[green]✅ Downloaded to {item.media_path}[/green]")
    else:
        console.print(f"[red]Download {item.download_status.value}[/red]")
        raise typer.Exit(code=1)


@app.command()
def remove(ctx: typer.Context, source_id: str = typer.Argument(..., help="Source ID")) -> None:
    """Unsubscribe a source and delete its items."""
    runtime = _inline_runtime(ctx)
    try:
        removed = runtime.sources.remove_source(source_id)
    finally:
        runtime.storage.close()
    if not removed:
        console.print(f"[bold red]❌ Source not found: {source_id}[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✅ Removed source {source_id}[/green]")


@app.command(name="remove-item")
def remove_item(ctx: typer.Context, item_id: str = typer.Argument(..., help="Item ID")) -> None:
    """Delete a single item."""
    runtime = _inline_runtime(ctx)
    try:
        removed = runtime.items.remove_item(item_id)
    finally:
        runtime.storage.close()
    if not removed:
        console.print(f"[bold red]❌ Item not found: {item_id}[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✅ Removed item {item_id}[/green]")


def print_item_event(event: Event) -> None:
    """Notification sink subscriber that echoes item changes to the console."""
    payload = event.payload
    console.print(
        f"[dim]{event.published_at.strftime('%H:%M:%S')}[/dim] "
        f"{event.kind.value:<8} {payload.get('title') or payload.get('reference')} "
        f"[dim]({payload.get('download_status')})[/dim]"
    )


@app.command()
def daemon(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Run one scheduled sync inline and exit"),
) -> None:
    """Run the scheduler: periodic syncs plus a worker pool for queued jobs."""
    config = load_config(ctx.obj.get("config_path"))

    if once:
        console.print("[bold blue]Starting vidkeep (--once mode)[/bold blue]")
        runtime = build_runtime(config, InlineJobQueue())
        try:
            queued = runtime.sources.request_scheduled_syncs()
        finally:
            runtime.storage.close()
        console.print(f"[green]✅ Synced {queued} source(s)[/green]")
        return

    try:
        with acquire_daemon_lock():
            _run_scheduler(config)
    except DaemonAlreadyRunning as e:
        console.print(f"[bold red]❌ {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)


def _run_scheduler(config: Config) -> None:
    jobs = JobQueue(workers=config.workers)
    runtime = build_runtime(config, jobs)
    stop = threading.Event()

    sources_reset, items_reset = runtime.storage.reset_interrupted()
    if sources_reset or items_reset:
        console.print(
            f"[yellow]Marked {sources_reset} interrupted sync(s) and "
            f"{items_reset} interrupted download(s) as failed[/yellow]"
        )

    runtime.notifier.subscribe(ITEMS_TOPIC, print_item_event)

    def signal_handler(sig, frame) -> None:
        console.print("\n[yellow]Received shutdown signal, stopping scheduler...[/yellow]")
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    jobs.start()
    jobs.every(
        runtime.sources.request_scheduled_syncs,
        minutes=config.sync_interval,
        job_id="scheduled_sync",
    )
    jobs.every(
        observability.get_event_log().prune,
        minutes=24 * 60,
        job_id="observability_cleanup",
    )
    jobs.enqueue(runtime.sources.request_scheduled_syncs, name="initial_sync")

    console.print(
        f"[green]✅ Scheduler started - syncing every {config.sync_interval} minutes "
        f"with {config.workers} workers[/green]"
    )
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    try:
        stop.wait()
    finally:
        jobs.shutdown(wait=True)
        runtime.storage.close()
