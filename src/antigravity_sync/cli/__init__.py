"""CLI interface using Typer."""

import logging

import typer
from rich.logging import RichHandler

app = typer.Typer(name="ags", help="Antigravity Sync: keep assistant data in step across machines via git")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )


# Import subcommand modules to register them
from . import sync_cmds  # noqa: F401, E402
from . import config_cmds  # noqa: F401, E402
