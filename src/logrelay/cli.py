"""Logrelay CLI entry point.

Commands:
    logrelay providers                    List registered providers
    logrelay logfiles --provider P        Show default log locations and files
    logrelay parse    <file> --provider P Parse a log file into entries
    logrelay check    --provider P        Test a server connection
    logrelay sessions --provider P        Show active sessions
    logrelay activity --provider P        Show recent activity
    logrelay watch    --provider P        Stream real-time updates
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .cache.watermarks import WatermarkStore
from .config import settings
from .logfiles import default_log_paths, detect_os_family, discover_log_files, rotation_date
from .models import LogLevel, NormalizedActivity, ParsedLogEntry, to_dict
from .parsers.reassembly import read_log_file
from .parsers.timestamps import parse_api_datetime
from .providers.base import Provider, ProviderConfig, RealtimeUpdate
from .providers.registry import UnknownProviderError, default_registry
from .transport.http import HttpError

console = Console()
err_console = Console(stderr=True)

# ── Helpers ─────────────────────────────────────────────────────────────────


def _level_colour(level: str) -> str:
    return {
        "fatal": "bold red",
        "error": "red",
        "warn": "yellow",
        "debug": "dim",
        "trace": "dim",
        "info": "green",
    }.get(level.lower(), "white")


def _setup_logging(level: str) -> None:
    handler = RichHandler(console=err_console, show_path=False, rich_tracebacks=False)
    root = logging.getLogger("logrelay")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())


def _fail(message: str) -> None:
    err_console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _make_provider(provider_id: str) -> Provider:
    default_registry.discover()
    try:
        return default_registry.create(provider_id)
    except UnknownProviderError:
        known = ", ".join(default_registry.list_providers())
        raise click.BadParameter(f"Unknown provider {provider_id!r}. Known: {known}", param_hint="--provider")


def _run_connected(
    provider: Provider,
    config: ProviderConfig,
    action: Callable[[Provider], Awaitable[Any]],
) -> Any:
    """Connect, run ``action``, and always disconnect."""

    async def _main() -> Any:
        await provider.connect(config)
        try:
            return await action(provider)
        finally:
            await provider.disconnect()

    try:
        return asyncio.run(_main())
    except HttpError as exc:
        _fail(f"{exc}\n{exc.suggestion}")


def _server_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the --provider/--url/--api-key options shared by server commands."""
    func = click.option("--api-key", required=True, envvar="LOGRELAY_API_KEY", help="Server API key.")(func)
    func = click.option("--url", required=True, envvar="LOGRELAY_URL", help="Server base URL.")(func)
    func = click.option(
        "--provider", "-p", "provider_id", required=True, envvar="LOGRELAY_PROVIDER",
        help="Provider id (see `logrelay providers`).",
    )(func)
    return func


def _parse_since(value: str) -> datetime | None:
    if not value:
        return None
    parsed = parse_api_datetime(value)
    if parsed is None:
        for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%d"):
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                pass
    if parsed is None:
        raise click.BadParameter(f"Cannot parse date: {value!r}. Use ISO-8601 format.", param_hint="--since")
    return parsed


def _print_entry(entry: ParsedLogEntry) -> None:
    colour = _level_colour(entry.level.value)
    source = f" [cyan]{escape(entry.source)}[/cyan]" if entry.source else ""
    console.print(
        f"[dim]{entry.timestamp.isoformat(sep=' ')}[/dim] "
        f"[{colour}]{entry.level.value.upper():5}[/{colour}]{source} {escape(entry.message)}",
        markup=True,
        highlight=False,
    )
    if entry.exception:
        console.print(f"  [red]{escape(entry.exception)}[/red]", highlight=False)


def _activity_table(activities: list[NormalizedActivity], title: str) -> Table:
    tbl = Table(title=title, box=box.ROUNDED, highlight=True)
    for col in ("timestamp", "severity", "type", "name", "overview"):
        tbl.add_column(col, overflow="fold", max_width=60)
    for a in activities:
        style = {"error": "red", "fatal": "bold red", "warn": "yellow"}.get(a.severity.value, "")
        tbl.add_row(a.timestamp.isoformat(sep=" "), a.severity.value, a.type, a.name, a.overview or "", style=style)
    return tbl


# ── CLI root ─────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version="0.1.0", prog_name="logrelay")
@click.option("--log-level", default=settings.log_level, show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Diagnostic log level (stderr).")
def main(log_level: str) -> None:
    """logrelay: media-server log and activity relay."""
    _setup_logging(log_level)


# ── providers ────────────────────────────────────────────────────────────────


@main.command()
def providers() -> None:
    """List registered providers and their capabilities."""
    default_registry.discover()
    tbl = Table(title="Providers", box=box.ROUNDED)
    for col in ("id", "name", "realtime", "activity", "sessions", "webhooks", "playback history"):
        tbl.add_column(col)
    mark = {True: "[green]yes[/green]", False: "[dim]no[/dim]"}
    for provider_id in default_registry.list_providers():
        p = default_registry.create(provider_id)
        c = p.capabilities
        tbl.add_row(
            p.id,
            p.name,
            mark[c.supports_real_time_logs],
            mark[c.supports_activity_log],
            mark[c.supports_sessions],
            mark[c.supports_webhooks],
            mark[c.supports_playback_history],
        )
    console.print(tbl)


# ── logfiles ─────────────────────────────────────────────────────────────────


@main.command()
@click.option("--provider", "-p", "provider_id", required=True, help="Provider id.")
@click.option("--dir", "directory", default="", help="Log directory to scan (default: vendor defaults).")
@click.option("--os", "family", default="", type=click.Choice(["", "docker", "linux", "windows", "macos"]),
              help="OS family for default paths (default: detected).")
def logfiles(provider_id: str, directory: str, family: str) -> None:
    """Show where a provider keeps its logs and which files are present.

    \b
    Examples:
      logrelay logfiles --provider jellyfin
      logrelay logfiles --provider sonarr --dir /srv/sonarr/logs
    """
    provider = _make_provider(provider_id)
    config = provider.get_log_file_config()
    family = family or detect_os_family()
    dirs = [directory] if directory else default_log_paths(config, family)

    console.print(f"[bold]{provider.name}[/bold] log files ({family}):")
    found_any = False
    for d in dirs:
        files = discover_log_files(d, config)
        if not files:
            console.print(f"  [dim]{d} (no matching files)[/dim]")
            continue
        found_any = True
        console.print(f"  {d}")
        for f in files:
            rotated = rotation_date(f.name, config)
            suffix = f" [dim](rotated {rotated.isoformat()})[/dim]" if rotated else ""
            console.print(f"    {f.name}{suffix}")
    if not found_any:
        err_console.print("[yellow]No log files found.[/yellow]")


# ── parse ────────────────────────────────────────────────────────────────────


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--provider", "-p", "provider_id", required=True, help="Provider whose log format to use.")
@click.option(
    "--output", "-o", "output_fmt", default="stream",
    type=click.Choice(["table", "stream", "json"], case_sensitive=False),
    help="Output format.",
    show_default=True,
)
@click.option("--limit", "-n", default=0, type=int, help="Max entries to display (0 = all).")
@click.option("--level", "min_level", default="", help="Only show entries at or above this level.")
def parse(file: Path, provider_id: str, output_fmt: str, limit: int, min_level: str) -> None:
    """Parse a server log file into entries, folding stack traces.

    \b
    Examples:
      logrelay parse log_20240115.log --provider jellyfin
      logrelay parse embyserver.txt --provider emby --output json
      logrelay parse sonarr.txt --provider sonarr --level warn --output table
    """
    provider = _make_provider(provider_id)
    order = list(LogLevel)
    threshold = 0
    if min_level:
        try:
            threshold = order.index(LogLevel(min_level.lower()))
        except ValueError:
            raise click.BadParameter(f"Unknown level {min_level!r}", param_hint="--level")

    def _entries() -> Iterator[ParsedLogEntry]:
        count = 0
        for entry in read_log_file(
            str(file),
            provider.line_parser,
            provider.get_correlation_patterns(),
            encoding=provider.get_log_file_config().encoding,
        ):
            if order.index(entry.level) < threshold:
                continue
            if limit and count >= limit:
                return
            count += 1
            yield entry

    if output_fmt == "json":
        count = 0
        for entry in _entries():
            click.echo(json.dumps(to_dict(entry), default=str))
            count += 1
        err_console.print(f"[dim]Parsed {count} entries from {file}[/dim]")
        return

    if output_fmt == "table":
        collected = list(_entries())
        if not collected:
            err_console.print("[yellow]No entries found.[/yellow]")
            return
        tbl = Table(title=file.name, box=box.ROUNDED, highlight=True)
        for col in ("timestamp", "level", "source", "message", "exception"):
            tbl.add_column(col, overflow="fold", max_width=70)
        for e in collected:
            style = {"error": "red", "fatal": "bold red", "warn": "yellow"}.get(e.level.value, "")
            tbl.add_row(e.timestamp.isoformat(sep=" "), e.level.value, e.source or "", e.message,
                        e.exception or "", style=style)
        console.print(tbl)
        console.print(f"[dim]{len(collected)} entries from {file.name}[/dim]")
        return

    count = 0
    for entry in _entries():
        _print_entry(entry)
        count += 1
    console.print(f"\n[dim]Parsed {count} entries from {file.name}[/dim]")


# ── check ────────────────────────────────────────────────────────────────────


@main.command()
@_server_options
def check(provider_id: str, url: str, api_key: str) -> None:
    """Test connectivity and credentials for a server."""
    provider = _make_provider(provider_id)
    config = ProviderConfig(url=url, api_key=api_key)

    async def _check() -> Any:
        try:
            await provider.connect(config)
        except HttpError as exc:
            return exc
        try:
            return await provider.test_connection()
        finally:
            await provider.disconnect()

    result = asyncio.run(_check())
    if isinstance(result, HttpError):
        _fail(f"Connection failed ({result.category.value}): {result}\n{result.suggestion}")
    if not result.connected:
        _fail(f"Connection failed: {result.error}")
    info = result.server_info
    console.print(f"[green]Connected[/green] to {info.name} {info.version} [dim]({info.id})[/dim]")


# ── sessions ─────────────────────────────────────────────────────────────────


@main.command()
@_server_options
@click.option("--json", "as_json", is_flag=True, help="Emit JSON lines instead of a table.")
def sessions(provider_id: str, url: str, api_key: str, as_json: bool) -> None:
    """Show the server's current playback sessions."""
    provider = _make_provider(provider_id)
    if not provider.capabilities.supports_sessions:
        _fail(f"{provider.name} has no playback sessions.")

    result = _run_connected(provider, ProviderConfig(url=url, api_key=api_key), lambda p: p.get_sessions())
    if as_json:
        for s in result:
            click.echo(json.dumps(to_dict(s), default=str))
        return
    if not result:
        err_console.print("[yellow]No active sessions.[/yellow]")
        return
    tbl = Table(title=f"{provider.name} sessions", box=box.ROUNDED)
    for col in ("user", "device", "client", "playing", "progress", "transcoding"):
        tbl.add_column(col, overflow="fold", max_width=40)
    for s in result:
        np = s.now_playing
        progress = ""
        if np and np.duration_ticks:
            progress = f"{100 * np.position_ticks / np.duration_ticks:.0f}%"
        tbl.add_row(
            s.user_name or "",
            s.device_name or s.device_id,
            f"{s.client_name or ''} {s.client_version or ''}".strip(),
            np.item_name if np else "",
            progress,
            ("yes" if np.is_transcoding else "no") if np else "",
        )
    console.print(tbl)


# ── activity ─────────────────────────────────────────────────────────────────


@main.command()
@_server_options
@click.option("--since", default="", help="Only activity after this instant (ISO-8601).")
@click.option("--incremental", is_flag=True, help="Resume from the last stored sync watermark (Redis).")
@click.option(
    "--output", "-o", "output_fmt", default="table",
    type=click.Choice(["table", "json"], case_sensitive=False),
    show_default=True,
)
def activity(provider_id: str, url: str, api_key: str, since: str, incremental: bool, output_fmt: str) -> None:
    """Show recent server activity.

    \b
    Examples:
      logrelay activity -p sonarr --url http://sonarr:8989 --api-key KEY
      logrelay activity -p jellyfin --since 2024-01-15T00:00:00
      logrelay activity -p radarr --incremental --output json
    """
    provider = _make_provider(provider_id)
    config = ProviderConfig(url=url, api_key=api_key)
    since_dt = _parse_since(since)

    store: WatermarkStore | None = None
    if incremental:
        store = WatermarkStore()
        if since_dt is None:
            since_dt = store.get(provider.id, config.url)

    result: list[NormalizedActivity] = _run_connected(provider, config, lambda p: p.get_activity(since_dt))

    if store is not None:
        watermark = provider.activity_watermark(result)
        if watermark is not None:
            store.set(provider.id, config.url, watermark)
        else:
            err_console.print("[yellow]Sync watermark not advanced.[/yellow]")

    if output_fmt == "json":
        for a in result:
            click.echo(json.dumps(to_dict(a), default=str))
        return
    if not result:
        err_console.print("[yellow]No activity.[/yellow]")
        return
    console.print(_activity_table(result, f"{provider.name} activity"))


# ── watch ────────────────────────────────────────────────────────────────────


def _print_update(update: RealtimeUpdate) -> None:
    stamp = (update.received_at or datetime.now(timezone.utc)).strftime("%H:%M:%S")
    if update.kind == "sessions":
        playing = sum(1 for s in update.sessions if s.now_playing)
        console.print(f"[dim]{stamp}[/dim] [cyan]sessions[/cyan] {len(update.sessions)} active, {playing} playing")
        return
    a = update.activity
    if a is None:
        return
    colour = _level_colour(a.severity.value)
    console.print(f"[dim]{stamp}[/dim] [{colour}]{update.kind}[/{colour}] {escape(a.name)}", highlight=False)


@main.command()
@_server_options
def watch(provider_id: str, url: str, api_key: str) -> None:
    """Stream real-time session and playback updates (Ctrl+C to stop)."""
    provider = _make_provider(provider_id)
    if not provider.capabilities.supports_real_time_logs:
        _fail(f"{provider.name} does not support real-time updates; use `logrelay activity` instead.")

    async def _watch(p: Provider) -> None:
        updates: asyncio.Queue[RealtimeUpdate] = asyncio.Queue()
        await p.start_realtime(updates.put_nowait)
        console.print(f"[dim]Watching {p.name} at {url} (Ctrl+C to stop)[/dim]")
        while True:
            _print_update(await updates.get())

    try:
        _run_connected(provider, ProviderConfig(url=url, api_key=api_key), _watch)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


if __name__ == "__main__":
    main()
