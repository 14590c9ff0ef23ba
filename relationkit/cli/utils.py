"""CLI utility functions."""

import logging
from pathlib import Path

import typer

import relationkit.cli as cli
from relationkit.config import CONFIG_FILE_NAME, RelationKitConfig
from relationkit.schema.loader import load_registry
from relationkit.schema.registry import SchemaRegistry

logger = logging.getLogger("RelationKit")


def load_cli_config() -> RelationKitConfig:
    """Load the configuration from the global config path, falling back to the environment.

    ``--config-path`` may point to a YAML file or to a directory containing
    ``relationkit.yaml``.
    """
    config_path = cli.CONFIG_PATH
    if config_path is not None:
        candidate = config_path / CONFIG_FILE_NAME if config_path.is_dir() else config_path
        if candidate.is_file():
            logger.debug(f"Loading configuration from {candidate}")
            return RelationKitConfig.from_config(candidate)
    return RelationKitConfig.from_env()


def load_cli_registry(schemas: Path | None, config: RelationKitConfig) -> SchemaRegistry:
    """Load the schema registry from an explicit path or from ``config.schemas_path``.

    Exits with code 1 when no schema file can be found.
    """
    path = schemas or (Path(config.schemas_path) if config.schemas_path else None)
    if path is None:
        typer.echo("No schema file given. Pass --schemas or set schemas_path in relationkit.yaml.", err=True)
        raise typer.Exit(1)
    if not path.is_file():
        typer.echo(f"Schema file not found: {path}", err=True)
        raise typer.Exit(1)
    return load_registry(path)
