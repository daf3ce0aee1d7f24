"""subwatch CLI - submarine return notifications."""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel

from . import __version__
from .config import settings
from .exceptions import SourceError
from .utils.console import console
from .utils.timefmt import display_timezone, format_listing_time, localize
from .voyages import listing_lines, snapshot, update_return_times

logger = logging.getLogger(__name__)

# In-game timestamp format used by the update command
UPDATE_FORMAT = "%m/%d/%Y %H:%M"
UPDATE_EXAMPLE = "11/14/2024 16:59"


def _print_panel(message: str, style: str = "blue") -> None:
    """Print a styled panel message."""
    console.print(Panel(f"[bold]{message}[/bold]", style=style))


def _resolve_db(db: Path | None) -> Path:
    return db if db is not None else settings.db_path


def _print_listing(db_path: Path) -> None:
    """Take one snapshot and print every voyage's return time."""
    try:
        records = snapshot(db_path)
    except SourceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if not records:
        console.print("[dim]No submarines found.[/dim]")
        return

    for line in listing_lines(records, display_timezone()):
        console.print(line, markup=False, highlight=False)


DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the SubmarineTracker database"),
]


app = typer.Typer(
    name="subwatch",
    help="Submarine return notifications - list return times or run the notification daemon",
)

daemon_app = typer.Typer(help="Background daemon that notifies when submarines return")
app.add_typer(daemon_app, name="daemon")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]subwatch[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """subwatch - know when your submarines are back."""
    if ctx.invoked_subcommand is None:
        _print_listing(settings.db_path)


# ============================================================================
# ONE-SHOT COMMANDS
# ============================================================================


@app.command("list")
def list_command(db: DbOption = None) -> None:
    """List return times of all submarines, grouped by character."""
    _print_listing(_resolve_db(db))


@app.command("update")
def update_command(
    when: Annotated[
        str,
        typer.Argument(help=f"New return time in FFXIV format, e.g. '{UPDATE_EXAMPLE}'"),
    ],
    db: DbOption = None,
) -> None:
    """Set the return time of ALL submarines, then list them."""
    try:
        naive = datetime.strptime(when, UPDATE_FORMAT)
    except ValueError:
        console.print(
            f"[red]Date format incorrect for '{when}', FFXIV format expected[/red]\n\n"
            f"Example: {UPDATE_EXAMPLE}"
        )
        raise typer.Exit(code=1)

    db_path = _resolve_db(db)
    try:
        update_return_times(db_path, localize(naive))
    except SourceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print("All submarine return times updated! These are the new return times...")
    _print_listing(db_path)


# ============================================================================
# DAEMON COMMANDS
# ============================================================================


@daemon_app.command("start")
def daemon_start(
    foreground: Annotated[
        bool,
        typer.Option("--foreground", "-f", help="Run in foreground (don't daemonize)"),
    ] = False,
) -> None:
    """Start the notification daemon.

    The daemon watches the SubmarineTracker database and, when a submarine
    returns, shows a desktop notification and sends a push notification.
    Return times changed in the game are picked up automatically.
    """
    from .daemon.server import get_daemon_status, run_daemon

    status = get_daemon_status()
    if status.status.value == "running":
        console.print(f"[yellow]Daemon already running (PID {status.pid})[/yellow]")
        return

    if foreground:
        _print_panel("Starting daemon in foreground...", style="cyan")
        console.print("[dim]Press Ctrl+C to stop[/dim]\n")
        exit_code = run_daemon(foreground=True)
        if exit_code:
            console.print(f"[red]Daemon exited with an error. Logs: {settings.log_file}[/red]")
            raise typer.Exit(code=exit_code)
        console.print("\n[dim]Daemon stopped.[/dim]")
    else:
        console.print("[bold cyan]Starting daemon...[/bold cyan]")
        run_daemon(foreground=False)
        # Give it a moment to start
        time.sleep(1)
        status = get_daemon_status()
        if status.status.value == "running":
            console.print(f"[green]Daemon started (PID {status.pid})[/green]")
            console.print(f"Logs: {settings.log_file}")
        else:
            console.print(f"[red]Failed to start daemon. Check logs: {settings.log_file}[/red]")
            raise typer.Exit(code=1)


@daemon_app.command("stop")
def daemon_stop() -> None:
    """Stop the notification daemon."""
    from .daemon.server import get_daemon_status, stop_daemon

    status = get_daemon_status()
    if status.status.value != "running":
        console.print("[yellow]Daemon is not running.[/yellow]")
        return

    console.print(f"[bold cyan]Stopping daemon (PID {status.pid})...[/bold cyan]")
    if stop_daemon():
        console.print("[green]Daemon stopped.[/green]")
    else:
        console.print("[red]Failed to stop daemon.[/red]")
        raise typer.Exit(code=1)


@daemon_app.command("status")
def daemon_status() -> None:
    """Show daemon status and upcoming returns."""
    from .daemon.server import get_daemon_status

    status = get_daemon_status()

    console.print("[bold cyan]Daemon Status[/bold cyan]\n")

    if status.status.value == "running":
        console.print("Status: [green]Running[/green]")
        console.print(f"PID: {status.pid}")
    else:
        console.print("Status: [yellow]Stopped[/yellow]")

    if status.upcoming_voyages is None:
        console.print(f"\n[dim]Database unavailable: {settings.db_path}[/dim]")
        return

    console.print(f"\nSubmarines still out: {status.upcoming_voyages}")
    if status.next_return is not None:
        console.print(f"Next return: {format_listing_time(status.next_return)}")


if __name__ == "__main__":
    app()
