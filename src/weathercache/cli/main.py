"""Main CLI entry point for weathercache.

Provides command-line maintenance of the on-disk historical weather cache.
"""

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table

from weathercache.cache import CacheConfig, CacheManager
from weathercache.messages import describe_code

T = TypeVar("T")

# Global console for Rich output
console = Console()


def build_config(cache_dir: Optional[str] = None, memory_only: bool = False) -> CacheConfig:
    """Build cache configuration from multiple sources.

    Priority:
    1. Explicit --cache-dir/-C flag
    2. WEATHERCACHE_DIR environment variable (via CacheConfig.from_env)
    3. Default ~/.weathercache

    Args:
        cache_dir: Cache directory from CLI context
        memory_only: Disable the persistent tier

    Returns:
        CacheConfig instance

    Raises:
        click.ClickException: If the explicit directory is not a directory
    """
    config = CacheConfig.from_env()
    if cache_dir:
        path = Path(cache_dir).expanduser()
        if path.exists() and not path.is_dir():
            raise click.ClickException(f"Not a directory: {cache_dir}")
        config.cache_dir = path
    if memory_only:
        config.persistent = False
    return config


def run_with_manager(
    config: CacheConfig, action: Callable[[CacheManager], Awaitable[T]]
) -> T:
    """Open a manager, run one action against it, and close it."""

    async def runner() -> T:
        manager = CacheManager(config)
        await manager.initialize()
        try:
            return await action(manager)
        finally:
            manager.close()

    return asyncio.run(runner())


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


@click.group()
@click.option(
    "--cache-dir",
    "-C",
    type=click.Path(),
    help="Cache directory (default: ~/.weathercache or WEATHERCACHE_DIR env var)",
)
@click.option(
    "--memory-only",
    is_flag=True,
    help="Do not open the on-disk cache",
)
@click.pass_context
def cli(ctx, cache_dir, memory_only):
    """weathercache CLI - Inspect and maintain the historical weather cache.

    Use --cache-dir/-C to choose the cache, or set WEATHERCACHE_DIR environment variable.
    """
    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = cache_dir
    ctx.obj["memory_only"] = memory_only


@cli.command("stats")
@click.pass_context
def stats(ctx):
    """Show entry counts and size estimates.

    Example:
        weathercache stats
        weathercache -C /mnt/shared/weather stats
    """
    try:
        config = build_config(ctx.obj.get("cache_dir"), ctx.obj.get("memory_only"))
        result = run_with_manager(config, lambda manager: manager.stats())

        table = Table(title="Historical weather cache")
        table.add_column("Metric", style="cyan", no_wrap=True)
        table.add_column("Value", justify="right", style="green")

        table.add_row("Mode", "persistent" if result.persistent else "memory-only")
        table.add_row("Historical entries", str(result.historical_count))
        table.add_row("Analytics entries", str(result.analytics_count))
        table.add_row("Memory size", _format_bytes(result.memory_size))
        table.add_row(
            "Estimated storage size (approx.)",
            _format_bytes(result.estimated_storage_size),
        )

        console.print(table)
        if result.persistent:
            console.print(f"  Database: {config.db_path}")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("sweep")
@click.pass_context
def sweep(ctx):
    """Remove expired entries.

    Example:
        weathercache sweep
    """
    try:
        config = build_config(ctx.obj.get("cache_dir"), ctx.obj.get("memory_only"))
        removed = run_with_manager(config, lambda manager: manager.clear_expired())
        console.print(f"[green]✓[/green] Removed {removed} expired entries")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def clear(ctx, yes):
    """Delete every cached entry.

    Example:
        weathercache clear
        weathercache clear --yes
    """
    try:
        config = build_config(ctx.obj.get("cache_dir"), ctx.obj.get("memory_only"))

        if not yes:
            click.confirm(
                f"Delete all cached weather data in {config.cache_dir}?", abort=True
            )

        run_with_manager(config, lambda manager: manager.clear_all())
        console.print("[green]✓[/green] Cleared historical weather cache")

    except click.Abort:
        console.print("[yellow]Aborted[/yellow]")
        sys.exit(1)
    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("explain")
@click.argument("code")
def explain(code):
    """Show the user message and suggested actions for an error code.

    Example:
        weathercache explain API_LIMIT_ERROR
    """
    message, actions = describe_code(code)
    console.print(f"\n[bold cyan]{code.upper()}[/bold cyan]")
    console.print(message)
    console.print("\n[bold]Suggested actions:[/bold]")
    for action in actions:
        console.print(f"  • {action}")


if __name__ == "__main__":
    cli()
