"""Sync commands: init, sync, push, pull, status, reset-password, watch, disconnect."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import app

console = Console()

_SEVERITY_STYLES = {"success": "green", "warning": "yellow", "error": "red", "info": "dim"}


def _render_event(event) -> None:
    # Errors are reported once by the command that caught them.
    if event.kind != "log" or event.severity == "error":
        return
    style = _SEVERITY_STYLES.get(event.severity, "dim")
    console.print(f"[{style}]{escape(event.message)}[/{style}]")


def _build_engine():
    from ..sync.engine import SyncEngine

    engine = SyncEngine()
    engine.events.subscribe(_render_event)
    return engine


def _fail(exc: Exception) -> None:
    console.print(f"[red]{escape(str(exc))}[/red]")
    raise typer.Exit(1)


def _busy() -> None:
    console.print("[yellow]Another sync is already running. Try again shortly.[/yellow]")


@app.command()
def init(
    url: str = typer.Option(..., "--url", prompt="Repository URL", help="Private git repository to sync through"),
    token: str = typer.Option(..., "--token", prompt="Access token", hide_input=True, help="Token with repo access"),
    password: str = typer.Option(
        "",
        "--password",
        prompt="Sync password",
        hide_input=True,
        confirmation_prompt=True,
        help="Shared password every device must know",
    ),
):
    """Connect this machine to a sync repository."""
    from ..core.errors import SyncError

    engine = _build_engine()
    try:
        engine.configure(url, token, password or None)
    except SyncError as exc:
        _fail(exc)
    console.print("[green]Sync is set up.[/green] Run [bold]ags sync[/bold] or [bold]ags watch[/bold].")


@app.command()
def sync():
    """Pull remote changes, then push local ones."""
    from ..core.errors import SyncError

    engine = _build_engine()
    try:
        done = engine.sync()
    except SyncError as exc:
        _fail(exc)
    if not done:
        _busy()
        return
    console.print("[green]Sync complete.[/green]")


@app.command()
def push():
    """Push local changes only (pulls first to avoid rejection)."""
    from ..core.errors import SyncError

    engine = _build_engine()
    try:
        done = engine.push()
    except SyncError as exc:
        _fail(exc)
    if not done:
        _busy()
        return
    console.print("[green]Push complete.[/green]")


@app.command()
def pull():
    """Pull remote changes into the working directory."""
    from ..core.errors import SyncError

    engine = _build_engine()
    try:
        stats = engine.pull()
    except SyncError as exc:
        _fail(exc)
    if stats is None:
        _busy()
        return

    console.print(f"[green]Pulled.[/green] {stats.copied} file(s) updated.")
    if stats.skipped_local_newer:
        console.print(
            f"[yellow]{stats.skipped_local_newer} local file(s) were newer and kept; "
            f"{stats.conflict_copies} remote version(s) saved in .conflicts[/yellow]"
        )
    if stats.skipped_conflict_files:
        console.print(f"[dim]{stats.skipped_conflict_files} conflict file(s) left in the repository[/dim]")


@app.command()
def status(
    detailed: bool = typer.Option(False, "--detailed", "-d", help="Include ahead/behind and changed files"),
    limit: int = typer.Option(10, "--limit", "-n", help="Changed files to list"),
):
    """Show sync status."""
    engine = _build_engine()
    st = engine.get_detailed_status(limit=limit) if detailed else engine.get_status()

    if not st.repository:
        console.print("[yellow]Sync is not configured.[/yellow]")
        console.print("Run [bold]ags init[/bold] to get started.")
        return

    table = Table(title="Antigravity Sync Status")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("State", st.state.value)
    table.add_row("Repository", st.repository)
    table.add_row("Last sync", st.last_sync.isoformat(timespec="seconds") if st.last_sync else "never")
    table.add_row("Pending changes", str(st.pending_changes))
    if detailed:
        table.add_row("Ahead / behind", f"{st.ahead} / {st.behind}")
        table.add_row("Last commit", st.last_commit_date or "none")
    console.print(table)

    if detailed and st.changed_files:
        console.print(f"[bold]Changed files[/bold] ({len(st.changed_files)} of {st.total_files})")
        for path in st.changed_files:
            console.print(f"  {escape(path)}")


@app.command("reset-password")
def reset_password(
    password: str = typer.Option(
        ..., "--password", prompt="New sync password", hide_input=True, confirmation_prompt=True
    ),
    token: str = typer.Option("", "--token", help="Access token (defaults to the stored one)"),
):
    """Replace the sync password for every device."""
    from ..core.errors import SyncError

    engine = _build_engine()
    try:
        engine.reset_password(password, token or None)
    except SyncError as exc:
        _fail(exc)
    console.print("[green]Sync password updated.[/green] Other devices must run [bold]ags init[/bold] again.")


@app.command()
def watch():
    """Run in the foreground: periodic sync plus push on file changes."""
    from ..sync.service import SyncService

    engine = _build_engine()
    service = SyncService(engine)

    async def _run() -> None:
        with console.status("Starting...") as spinner:
            service.set_countdown_callback(lambda seconds: spinner.update(f"Next sync in {seconds}s"))
            if not await service.start():
                return
            try:
                await asyncio.Event().wait()
            finally:
                await service.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@app.command()
def disconnect(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Forget the repository URL and stored credentials. Files are kept."""
    if not yes and not typer.confirm("Disconnect this machine from sync?"):
        raise typer.Exit(0)
    engine = _build_engine()
    engine.disconnect()
    console.print("[green]Disconnected.[/green]")
