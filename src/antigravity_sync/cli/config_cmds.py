"""Configuration commands: config get/set/list, folders list/enable/disable."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from . import app

console = Console()

config_app = typer.Typer(help="Configuration")
app.add_typer(config_app, name="config")

folders_app = typer.Typer(help="Managed folders")
app.add_typer(folders_app, name="folders")


@config_app.command("list")
def config_list():
    """Show the merged configuration."""
    from ..core.config import load_config

    console.print_json(data=load_config())


@config_app.command("get")
def config_get(key: str = typer.Argument(..., help="Dotted key, e.g. sync.auto_sync")):
    """Print one configuration value."""
    from ..core.config import get_config_value, load_config

    val = get_config_value(load_config(), key)
    if val is None:
        console.print(f"[yellow]Key not found:[/yellow] {key}")
        raise typer.Exit(1)
    console.print(f"{key} = {val}")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Dotted key, e.g. sync.sync_interval_minutes"),
    value: str = typer.Argument(..., help="Value; comma-separated for lists"),
):
    """Set a configuration value in the global config file."""
    from ..core.config import save_config

    save_config(key, value)
    console.print(f"[green]Set[/green] {key} = {value}")


@folders_app.command("list")
def folders_list():
    """List managed folders and whether they exist locally."""
    from ..core.config import DEFAULT_SYNC_FOLDERS, load_sync_config

    config = load_sync_config()
    names = list(dict.fromkeys([*DEFAULT_SYNC_FOLDERS, *config.sync_folders]))

    table = Table(title="Managed folders")
    table.add_column("Folder", style="bold")
    table.add_column("Synced")
    table.add_column("Present locally")
    for name in names:
        enabled = name in config.sync_folders
        present = (config.local_path / name).is_dir()
        table.add_row(name, "[green]yes[/green]" if enabled else "[dim]no[/dim]", "yes" if present else "-")
    console.print(table)


@folders_app.command("enable")
def folders_enable(folder: str = typer.Argument(..., help="Top-level folder name")):
    """Add a folder to the sync scope."""
    from ..core.config import set_folder_enabled

    if "/" in folder or folder.startswith("."):
        console.print(f"[red]Not a top-level folder name:[/red] {folder}")
        raise typer.Exit(1)
    folders = set_folder_enabled(folder, True)
    console.print(f"[green]Enabled[/green] {folder} ({', '.join(folders)})")


@folders_app.command("disable")
def folders_disable(folder: str = typer.Argument(..., help="Top-level folder name")):
    """Remove a folder from the sync scope. Files already synced stay in the repository."""
    from ..core.config import set_folder_enabled

    folders = set_folder_enabled(folder, False)
    console.print(f"[green]Disabled[/green] {folder} ({', '.join(folders) or 'none'})")
