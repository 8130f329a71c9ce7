"""Command-line interface for dimcache.

Commands:
    - stats: Show which keys are cached in memory and on disk
    - get: Print a cached lookup table
    - clear: Clear one key or the whole cache
    - warmup: Fetch every lookup table that is not cached yet
    - refresh: Run one proactive refresh pass
    - serve: Keep the cache warm in the foreground until interrupted
    - config init: Write a config file with the default settings
    - config show: Print the effective configuration as TOML

Public API:
    main: Click group for the 'dimcache' console script
"""

import json
import logging
import sys
import threading
from pathlib import Path

import click
import tomlkit
from rich.console import Console
from rich.table import Table

from dimcache import __version__
from dimcache.cache.background_refresh import RefreshReport
from dimcache.config_manager import ConfigError, ConfigManager, DimCacheConfig
from dimcache.service import CacheService
from dimcache.upstream_client import UpstreamClient

logger = logging.getLogger(__name__)

__all__ = ["main"]


def _format_duration(ms: int) -> str:
    """Format milliseconds as a compact duration (e.g. 6d 23h, 45m, -2h)."""
    sign = "-" if ms < 0 else ""
    seconds = abs(ms) // 1000
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{sign}{days}d {hours}h"
    if hours:
        return f"{sign}{hours}h {minutes}m"
    return f"{sign}{minutes}m"


def _load_service(ctx: click.Context) -> CacheService:
    config: DimCacheConfig = ctx.obj["config"]
    return CacheService.from_config(config)


def _make_client(config: DimCacheConfig) -> UpstreamClient:
    return UpstreamClient(
        base_url=config.api_base_url,
        timeout=config.request_timeout,
        max_retries=config.max_retries,
    )


def _wait_for_interrupt() -> None:
    """Block the main thread until Ctrl-C."""
    threading.Event().wait()


def _report(title: str, report: RefreshReport) -> None:
    click.echo(f"{title}: {report.summary()}")
    for key, reason in sorted(report.failed.items()):
        click.echo(click.style(f"  {key}: {reason}", fg="red"), err=True)


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """dimcache - Two-tier cache for targeting lookup tables.

    Keeps countries, devices, browsers and other lookup tables from the
    upstream API warm in memory and on disk.

    \b
    Examples:
        dimcache stats
        dimcache get countries
        dimcache clear --all
        dimcache serve
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = ConfigManager.load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show cached keys per tier with remaining lifetime."""
    service = _load_service(ctx)
    cache = service.cache
    snapshot = cache.stats()

    table = Table(title="dimcache", show_header=True, header_style="bold", border_style="dim")
    table.add_column("Key", style="cyan")
    table.add_column("Memory", justify="center")
    table.add_column("Disk", justify="center")
    table.add_column("TTL", justify="right")
    table.add_column("Time left", justify="right")

    keys = sorted(set(cache.policy.keys()) | snapshot.volatile_keys | snapshot.durable_keys)
    for key in keys:
        ttl = cache.ttl_for(key)
        entry = cache.peek(key)
        if entry is None:
            left = "[dim]-[/dim]"
        else:
            remaining = entry.time_left(ttl, cache.now())
            if remaining >= service.scheduler.threshold_ms:
                color = "green"
            elif remaining > 0:
                color = "yellow"
            else:
                color = "red"
            left = f"[{color}]{_format_duration(remaining)}[/{color}]"

        table.add_row(
            key,
            "[green]yes[/green]" if key in snapshot.volatile_keys else "[dim]no[/dim]",
            "[green]yes[/green]" if key in snapshot.durable_keys else "[dim]no[/dim]",
            _format_duration(ttl),
            left,
        )

    console = Console()
    console.print(table)
    console.print(f"[bold]Cache directory:[/bold] {cache.cache_dir}")
    if snapshot.is_empty:
        console.print("[yellow]Cache is empty. Run 'dimcache warmup' to fill it.[/yellow]")


@main.command()
@click.argument("key")
@click.pass_context
def get(ctx: click.Context, key: str) -> None:
    """Print the cached value for KEY as JSON."""
    service = _load_service(ctx)
    value = service.get_cache(key)
    if value is None:
        click.echo(f"Cache miss: {key}", err=True)
        sys.exit(1)
    click.echo(json.dumps(value, indent=2, ensure_ascii=False))


@main.command()
@click.argument("key", required=False)
@click.option("--all", "clear_all", is_flag=True, help="Clear every cached key")
@click.pass_context
def clear(ctx: click.Context, key: str | None, clear_all: bool) -> None:
    """Clear KEY from memory and disk, or everything with --all."""
    if clear_all == bool(key):
        click.echo("Error: Specify exactly one of KEY or --all.", err=True)
        sys.exit(1)

    service = _load_service(ctx)
    if clear_all:
        service.clear_all_cache()
        click.echo("All cache cleared")
    else:
        service.clear_cache(key)
        click.echo(f"Cache cleared: {key}")


@main.command()
@click.pass_context
def warmup(ctx: click.Context) -> None:
    """Fetch every lookup table that has no valid cached value."""
    config: DimCacheConfig = ctx.obj["config"]
    service = _load_service(ctx)
    client = _make_client(config)
    try:
        report = service.warmup_cache(client)
    finally:
        client.close()

    _report("Cache warmup", report)
    if not report.ok:
        sys.exit(1)


@main.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Refresh lookup tables that are missing or close to expiry."""
    config: DimCacheConfig = ctx.obj["config"]
    service = _load_service(ctx)
    client = _make_client(config)
    try:
        report = service.scheduler.refresh_once(client)
    finally:
        client.close()

    _report("Cache refresh", report)
    if not report.ok:
        sys.exit(1)


@main.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Warm the cache and keep it refreshed until interrupted (Ctrl-C)."""
    config: DimCacheConfig = ctx.obj["config"]
    service = _load_service(ctx)
    client = _make_client(config)

    # Show refresh activity even without --verbose
    logging.getLogger("dimcache").setLevel(logging.INFO)

    report = service.start_auto_refresh(client)
    _report("Cache warmup", report)
    click.echo(
        f"Auto refresh running every {config.refresh_interval:g}s "
        f"(threshold: {config.refresh_threshold:g}s). Press Ctrl-C to stop."
    )

    try:
        _wait_for_interrupt()
    except KeyboardInterrupt:
        click.echo("\nStopping auto refresh...")
    finally:
        service.stop_auto_refresh()
        client.close()


@main.group(name="config")
def config_group() -> None:
    """Manage the dimcache configuration file.

    \b
    SUBCOMMANDS:
        init     Write a config file with the default settings
        show     Print the effective configuration
    """
    pass


@config_group.command(name="init")
@click.option("--path", "target", help="Where to write (default: ~/.dimcache/config.toml)")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(target: str | None, force: bool) -> None:
    """Write a config file with the default settings."""
    path = Path(target).expanduser() if target else ConfigManager.DEFAULT_CONFIG_FILE
    if path.exists() and not force:
        click.echo(f"Error: Config file already exists: {path} (use --force)", err=True)
        sys.exit(1)

    try:
        written = ConfigManager.save_config(DimCacheConfig(), target)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Config written: {written}")


@config_group.command(name="show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration as TOML."""
    config: DimCacheConfig = ctx.obj["config"]
    click.echo(tomlkit.dumps(config.to_dict()), nl=False)


if __name__ == "__main__":
    main()
