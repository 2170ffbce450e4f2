"""CLI interface for letterbox."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from letterbox.config import LetterboxConfig, load_config, merge_cli_overrides
from letterbox.errors import SourceNotFoundError
from letterbox.intake.discovery import discover_feeds
from letterbox.intake.models import Source, SourceType, User
from letterbox.intake.parsers.feed import FeedFetcher
from letterbox.intake.poller import FeedPoller
from letterbox.intake.processor import EmailProcessor
from letterbox.storage import Storage, open_storage

app = typer.Typer(
    name="letterbox",
    help="Aggregate newsletters from RSS feeds and forwarded email.",
)

console = Console()

_state: dict[str, object] = {}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from letterbox import __version__

        console.print(f"letterbox {__version__}")
        raise typer.Exit()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _config() -> LetterboxConfig:
    config = _state.get("config")
    if config is None:
        config = load_config()
        _state["config"] = config
    return config


def _storage() -> Storage:
    return open_storage(_config().storage.directory)


@app.callback()
def main(
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .letterbox.toml file."),
    ] = None,
    storage_dir: Annotated[
        Optional[str],
        typer.Option("--storage-dir", help="Directory holding the letterbox store."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Letterbox - newsletter aggregation from feeds and forwarded email."""
    config = load_config(config_path)
    config = merge_cli_overrides(
        config,
        storage_directory=storage_dir,
        log_level="DEBUG" if verbose else None,
    )
    _state["config"] = config
    _setup_logging(config.logging.level)


@app.command("add-user")
def add_user(
    email: Annotated[str, typer.Argument(help="The user's own email address.")],
    forwarding: Annotated[
        str,
        typer.Option("--forwarding", "-f", help="Forwarding address newsletters are sent to."),
    ],
) -> None:
    """Create a user reachable through a forwarding address."""
    storage = _storage()
    if storage.find_user_by_forwarding_address(forwarding) is not None:
        console.print(f"[red]Error:[/red] Forwarding address already in use: {forwarding}")
        raise typer.Exit(1)
    user = storage.create_user(User(email=email, forwarding_address=forwarding))
    console.print(f"[green]Created user[/green] {user.id} ({user.email} ← {user.forwarding_address})")


@app.command("add-feed")
def add_feed(
    url: Annotated[str, typer.Argument(help="RSS or Atom feed URL.")],
    user_id: Annotated[str, typer.Option("--user", "-u", help="Owning user id.")],
    name: Annotated[
        Optional[str],
        typer.Option("--name", "-n", help="Display name. Defaults to the feed title."),
    ] = None,
) -> None:
    """Validate a feed and subscribe a user to it."""
    config = _config()
    storage = _storage()
    if storage.get_user(user_id) is None:
        console.print(f"[red]Error:[/red] Unknown user: {user_id}")
        raise typer.Exit(1)

    validation = FeedFetcher(config.fetch).validate_feed(url)
    if not validation.valid:
        console.print(f"[red]Error:[/red] {validation.error}")
        raise typer.Exit(1)

    source = storage.create_source(
        Source(
            user_id=user_id,
            name=name or validation.title,
            type=SourceType.RSS,
            configuration={"url": url},
        )
    )
    console.print(
        f"[green]Added feed[/green] {source.name} ({validation.item_count} items) as {source.id}"
    )


@app.command("sources")
def list_sources(
    user_id: Annotated[
        Optional[str],
        typer.Option("--user", "-u", help="Only show this user's sources."),
    ] = None,
) -> None:
    """Show sources with their sync status."""
    sources = _storage().list_sources(user_id)
    if not sources:
        console.print("[yellow]No sources found.[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Sources")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Next retry")
    table.add_column("Last error")
    for s in sources:
        status = s.sync_status.value if s.is_active else f"{s.sync_status.value} (inactive)"
        table.add_row(
            s.id,
            s.name,
            s.type.value,
            status,
            str(s.item_count),
            str(s.error_count),
            s.next_retry_at.isoformat(timespec="minutes") if s.next_retry_at else "-",
            s.sync_error or "",
        )
    console.print(table)


@app.command("poll")
def poll(
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single cycle instead of polling forever."),
    ] = False,
) -> None:
    """Poll due RSS sources."""
    poller = FeedPoller(_storage(), config=_config())
    if once:
        report = asyncio.run(poller.run_cycle())
        console.print(
            f"[green]Polled {report.sources_selected} source(s):[/green] "
            f"{report.succeeded} ok, {report.failed} failed, {report.items_created} new item(s)"
        )
        return

    console.print(f"Polling every {_config().poller.interval_minutes} minutes. Ctrl+C to stop.")
    try:
        asyncio.run(poller.run_forever())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")


@app.command("poll-source")
def poll_source(
    source_id: Annotated[str, typer.Argument(help="Id of the RSS source to poll now.")],
) -> None:
    """Poll one RSS source immediately, ignoring its schedule."""
    poller = FeedPoller(_storage(), config=_config())
    try:
        result = asyncio.run(poller.poll_now(source_id))
    except SourceNotFoundError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    if result.error:
        console.print(f"[red]Poll failed:[/red] {result.error}")
        raise typer.Exit(1)
    console.print(
        f"[green]{result.outcome.value}:[/green] {result.items_created} new item(s), "
        f"{result.duplicates_skipped} duplicate(s)"
    )


@app.command("ingest-email")
def ingest_email(
    path: Annotated[
        Path,
        typer.Argument(help="Raw .eml file.", exists=True, dir_okay=False, readable=True),
    ],
    to: Annotated[
        str,
        typer.Option("--to", "-t", help="Forwarding address the message was sent to."),
    ],
) -> None:
    """Run one raw email through validation, dedup and storage."""
    processor = EmailProcessor(_storage(), config=_config())
    result = processor.process_raw_email(path.read_bytes(), to)

    if not result.success:
        console.print(f"[red]Rejected:[/red] {result.reason}")
        if result.risk_level:
            console.print(f"  Risk level: {result.risk_level.value}")
        raise typer.Exit(1)
    if result.duplicate:
        console.print(f"[yellow]Duplicate[/yellow] of item {result.existing_item_id}")
        return
    console.print(f"[green]Stored[/green] item {result.item_id} in source {result.source_id}")


@app.command("discover")
def discover(
    url: Annotated[str, typer.Argument(help="Web page to search for feeds.")],
) -> None:
    """List RSS/Atom feeds advertised by a web page."""
    feeds = discover_feeds(url, config=_config().fetch)
    if not feeds:
        console.print("[yellow]No feeds found.[/yellow]")
        raise typer.Exit(0)
    for feed in feeds:
        console.print(f"  - {feed.title}: {feed.url}")


if __name__ == "__main__":
    app()
