"""Launchpad CLI entry point."""

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from launchpad.config import DEFAULT_CONFIG_FILE, LauncherSettings, current_platform, load_settings
from launchpad.errors import CloneFailed, ConfigError, LaunchError, SyncError
from launchpad.git import GitError, get_head_commit
from launchpad.launcher import launch
from launchpad.sync import (
    ConsoleProgressReporter,
    MergeAnalysis,
    SyncAction,
    check_for_updates,
    is_existing_repository,
    sync,
)

console = Console()
logger = logging.getLogger(__name__)

# Exit status for configuration problems, distinct from the launched app's codes
CONFIG_ERROR_EXIT_CODE = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=False)],
    )


def _settings(ctx: click.Context) -> LauncherSettings:
    """Load settings once per invocation, exiting on configuration errors."""
    if "settings" not in ctx.obj:
        try:
            ctx.obj["settings"] = load_settings(ctx.obj["config_path"], ctx.obj["platform"])
        except ConfigError as e:
            console.print(f"[red]✗[/red] {e}")
            raise SystemExit(CONFIG_ERROR_EXIT_CODE) from e
    return ctx.obj["settings"]


async def _sync(settings: LauncherSettings) -> SyncAction:
    result = await sync(
        settings.sync_target(),
        ConsoleProgressReporter(console),
        timeout=settings.fetch_timeout,
    )
    return result.action


@click.group(invoke_without_command=True)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=DEFAULT_CONFIG_FILE,
    envvar="LAUNCHPAD_CONFIG",
    show_default=True,
    help="Configuration file",
)
@click.option(
    "--platform",
    "platform_name",
    type=click.Choice(["linux", "windows", "macos"]),
    default=None,
    help="Configuration section to use (defaults to the current platform)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: str, platform_name: str | None) -> None:
    """Launchpad - keep an application up to date, then launch it."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path
    ctx.obj["platform"] = platform_name
    setup_logging(verbose)

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--no-update", is_flag=True, help="Skip the update step")
@click.argument("app_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx: click.Context, no_update: bool = False, app_args: tuple[str, ...] = ()) -> None:
    """Update the application (best effort), then launch it.

    Any additional arguments are passed to the application.
    """
    settings = _settings(ctx)

    if not no_update:
        try:
            asyncio.run(_sync(settings))
        except ConfigError as e:
            console.print(f"[red]✗[/red] {e}")
            raise SystemExit(CONFIG_ERROR_EXIT_CODE) from e
        except CloneFailed as e:
            # Nothing launchable exists before the first download completes
            console.print(f"[red]✗[/red] {e}")
            raise SystemExit(1) from e
        except SyncError as e:
            logger.warning(f"Failed to update app, launching anyway: {e}")

    try:
        outcome = asyncio.run(
            launch(settings.executable_path, app_args, cwd=settings.working_dir)
        )
    except LaunchError as e:
        console.print(f"[red]✗[/red] {e}")
        raise SystemExit(1) from e

    if outcome.exit_code != 0:
        raise SystemExit(outcome.exit_code)


@cli.command("sync")
@click.pass_context
def sync_command(ctx: click.Context) -> None:
    """Update the application without launching it."""
    settings = _settings(ctx)

    try:
        action = asyncio.run(_sync(settings))
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise SystemExit(CONFIG_ERROR_EXIT_CODE) from e
    except SyncError as e:
        console.print(f"[red]✗[/red] {e}")
        raise SystemExit(1) from e

    if action == SyncAction.CLONED:
        console.print(f"[green]✓[/green] Downloaded to {settings.target_path}")
    elif action == SyncAction.UPDATED:
        console.print("[green]✓[/green] Update applied")
    else:
        console.print("[green]✓[/green] Already up to date")


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check for an update without applying it."""
    settings = _settings(ctx)

    try:
        result = asyncio.run(
            check_for_updates(
                settings.sync_target(),
                ConsoleProgressReporter(console),
                timeout=settings.fetch_timeout,
            )
        )
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise SystemExit(CONFIG_ERROR_EXIT_CODE) from e
    except SyncError as e:
        console.print(f"[red]✗[/red] {e}")
        raise SystemExit(1) from e

    if not result.installed:
        console.print(f"[yellow]→[/yellow] Not installed yet at {settings.target_path}")
    elif result.analysis == MergeAnalysis.UP_TO_DATE:
        console.print("[green]✓[/green] Already up to date")
        console.print(f"  Current: [cyan]{(result.local_commit or '')[:10]}[/cyan]")
    else:
        console.print("[yellow]→[/yellow] Update available")
        console.print(f"  Current: [dim]{(result.local_commit or 'none')[:10]}[/dim]")
        console.print(f"  Latest:  [cyan]{(result.remote_commit or '')[:10]}[/cyan]")
        console.print("\nRun [cyan]launchpad sync[/cyan] to update")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the resolved configuration and the installed commit."""
    settings = _settings(ctx)

    try:
        installed = is_existing_repository(settings.target_path)
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        raise SystemExit(CONFIG_ERROR_EXIT_CODE) from e

    commit = None
    if installed:
        try:
            commit = asyncio.run(get_head_commit(settings.target_path))
        except GitError as e:
            logger.debug(f"Failed to read installed commit: {e}")

    table = Table(title="Launchpad Status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Platform", settings.platform)
    table.add_row("Detected Platform", current_platform())
    table.add_row("Remote", settings.remote_location)
    table.add_row("Branch", settings.branch)
    table.add_row("Target", str(settings.target_path))
    table.add_row("Executable", str(settings.executable_path))
    table.add_row("Installed", "yes" if installed else "no")
    table.add_row("Commit", commit or "-")

    console.print(table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
