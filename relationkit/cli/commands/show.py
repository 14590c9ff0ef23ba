"""show command - Show registered schemas and their association wiring."""

from pathlib import Path
from typing import Annotated

import typer

from relationkit.cli.utils import load_cli_config, load_cli_registry
from relationkit.exceptions import RelationKitError
from relationkit.schema.resolver import AssociationResolver, wiring_summary

show_app = typer.Typer(
    name="show",
    help="Show registered schemas and association wiring.",
)

SchemasOption = Annotated[
    Path | None,
    typer.Option("--schemas", "-s", help="Schema definition YAML file (default: schemas_path from config)"),
]


@show_app.command(name="schemas")
def show_schemas(schemas: SchemasOption = None) -> None:
    """List every schema with its fields and associations.

    Examples:
        relationkit show schemas --schemas=schemas.yaml
    """
    try:
        registry = load_cli_registry(schemas, load_cli_config())
    except RelationKitError as e:
        typer.echo(f"Invalid schema file: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo("\nSchemas:")
    typer.echo("-" * 60)
    for schema in registry:
        typer.echo(f"  {schema.name} ({schema.source})")
        fields = ", ".join(f"{f.name}:{f.type.value}" for f in schema.fields)
        typer.echo(f"    fields: {fields}")
        for assoc in schema.associations:
            typer.echo(f"    {assoc.kind.value} {assoc.name} -> {assoc.related}")
    typer.echo("-" * 60)
    typer.echo(f"Total: {len(registry)} schemas")


@show_app.command(name="wiring")
def show_wiring(
    schema_name: Annotated[str, typer.Argument(help="Schema whose associations are resolved")],
    schemas: SchemasOption = None,
) -> None:
    """Resolve and print the key wiring of every association of a schema.

    Examples:
        relationkit show wiring Movie --schemas=schemas.yaml
    """
    try:
        registry = load_cli_registry(schemas, load_cli_config())
        schema = registry.lookup(schema_name)
        resolver = AssociationResolver(registry)
        lines = [(assoc, wiring_summary(resolver.wiring_for(schema, assoc.name))) for assoc in schema.associations]
    except RelationKitError as e:
        typer.echo(f"Cannot resolve '{schema_name}': {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(f"\n{schema.name} associations:")
    typer.echo("-" * 60)
    if not lines:
        typer.echo("  (none)")
    for assoc, summary in lines:
        typer.echo(f"  {assoc.name} [{assoc.kind.value}]: {summary}")
