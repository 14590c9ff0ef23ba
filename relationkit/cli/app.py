"""Typer-based CLI application for RelationKit."""

import logging
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Annotated

import typer

import relationkit.cli as cli
from relationkit.cli.commands.migrate import migrate
from relationkit.cli.commands.show import show_app

# Configure logging for CLI output
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"relationkit {get_version('relationkit')}")
        raise typer.Exit()


# Main Typer app
app = typer.Typer(
    name="relationkit",
    help="RelationKit CLI - provision and inspect association schemas.",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main_callback(
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config-path",
            "-cp",
            help="Path to relationkit.yaml or to the directory containing it",
            envvar="RELATIONKIT_CONFIG_PATH",
        ),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """RelationKit CLI - provision and inspect association schemas.

    Global options are processed before any command.
    """
    cli.set_config_path(config_path)


# Add sub-apps
app.add_typer(show_app, name="show")

# Add simple commands
app.command(name="migrate")(migrate)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
