"""migrate command - Provision the tables of a schema definition file."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from sqlalchemy.exc import SQLAlchemyError

from relationkit.cli.utils import load_cli_config, load_cli_registry
from relationkit.exceptions import RelationKitError
from relationkit.orm.connection import DBConnection
from relationkit.orm.tables import provision

logger = logging.getLogger("RelationKit")


def migrate(
    schemas: Annotated[
        Path | None,
        typer.Option("--schemas", "-s", help="Schema definition YAML file (default: schemas_path from config)"),
    ] = None,
    database_url: Annotated[
        str | None,
        typer.Option("--database-url", help="SQLAlchemy database URL (default: database_url from config)"),
    ] = None,
) -> None:
    """Create the tables and join tables of every schema in a definition file.

    Examples:
        relationkit migrate --schemas=schemas.yaml
        relationkit migrate -s schemas.yaml --database-url=sqlite:///movies.db
    """
    config = load_cli_config()
    if database_url is not None:
        config.database_url = database_url

    try:
        registry = load_cli_registry(schemas, config)
        connection = DBConnection.from_config(config)
        tables = provision(registry, connection.get_engine())
    except (RelationKitError, SQLAlchemyError) as e:
        typer.echo(f"Migration failed: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(f"Provisioned {len(tables.metadata.tables)} tables:")
    for name in sorted(tables.metadata.tables):
        typer.echo(f"  {name}")
    connection.dispose()
