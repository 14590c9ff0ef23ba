"""SQLAlchemy tables for registered schemas.

TableBuilder maps each registered EntitySchema to a Core ``Table`` on one
``MetaData``, adds the foreign keys implied by belongs_to declarations and the
synthesized two-column join tables of many_to_many associations.
``provision`` creates all of them in a database (a one-time step).
"""

import logging

from sqlalchemy import Column, Engine, ForeignKey, MetaData, Table, UniqueConstraint

from relationkit.config import AssociationKind
from relationkit.schema.declaration import EntitySchema
from relationkit.schema.registry import SchemaRegistry
from relationkit.schema.resolver import AssociationResolver, JoinWiring
from relationkit.schema.types import column_type

logger = logging.getLogger("RelationKit")


def unique_index_name(source: str, columns: tuple[str, ...] | list[str]) -> str:
    return f"{source}_{'_'.join(columns)}_index"


def foreign_key_name(source: str, column: str) -> str:
    return f"{source}_{column}_fkey"


class TableBuilder:
    """Build (and cache) the Core tables of a registry."""

    def __init__(
        self,
        registry: SchemaRegistry,
        resolver: AssociationResolver | None = None,
        metadata: MetaData | None = None,
    ):
        self.registry = registry
        self.resolver = resolver or AssociationResolver(registry)
        self.metadata = metadata or MetaData()
        self._tables: dict[str, Table] = {}
        self._join_tables: dict[str, Table] = {}

    def table(self, schema: EntitySchema | str) -> Table:
        """Return the table of a schema, building it on first use."""
        schema = self.registry.lookup(schema) if isinstance(schema, str) else schema
        cached = self._tables.get(schema.name)
        if cached is not None:
            return cached

        foreign_keys = {}
        for assoc in schema.associations:
            if assoc.kind != AssociationKind.BELONGS_TO:
                continue
            related = self.registry.lookup(assoc.related)
            references = assoc.references or related.primary_key
            foreign_keys[assoc.foreign_key] = ForeignKey(
                f"{related.source}.{references}", name=foreign_key_name(schema.source, str(assoc.foreign_key))
            )

        columns = []
        for f in schema.fields:
            args = [foreign_keys[f.name]] if f.name in foreign_keys else []
            columns.append(
                Column(
                    f.name,
                    column_type(f.type),
                    *args,
                    primary_key=f.primary_key,
                    autoincrement=f.primary_key,
                    nullable=not f.primary_key,
                )
            )
        constraints = [
            UniqueConstraint(*group, name=unique_index_name(schema.source, group)) for group in schema.unique
        ]

        table = Table(schema.source, self.metadata, *columns, *constraints)
        self._tables[schema.name] = table
        return table

    def join_table(self, wiring: JoinWiring) -> Table:
        """Return the join relation table of a many_to_many wiring."""
        if wiring.join_schema is not None:
            return self.table(wiring.join_schema)

        cached = self._join_tables.get(wiring.join_source)
        if cached is not None:
            return cached

        owner_key = wiring.owner.field(wiring.owner_key)
        related_key = wiring.related.field(wiring.related_key)
        table = Table(
            wiring.join_source,
            self.metadata,
            Column(
                wiring.join_owner_key,
                column_type(owner_key.type),
                ForeignKey(
                    f"{wiring.owner.source}.{wiring.owner_key}",
                    name=foreign_key_name(wiring.join_source, wiring.join_owner_key),
                ),
                nullable=False,
            ),
            Column(
                wiring.join_related_key,
                column_type(related_key.type),
                ForeignKey(
                    f"{wiring.related.source}.{wiring.related_key}",
                    name=foreign_key_name(wiring.join_source, wiring.join_related_key),
                ),
                nullable=False,
            ),
            UniqueConstraint(
                wiring.join_owner_key,
                wiring.join_related_key,
                name=unique_index_name(wiring.join_source, [wiring.join_owner_key, wiring.join_related_key]),
            ),
        )
        self._join_tables[wiring.join_source] = table
        return table

    def build_all(self) -> MetaData:
        """Build every schema table and every synthesized join table."""
        for schema in self.registry:
            self.table(schema)
        for wiring in self.resolver.join_wirings():
            self.join_table(wiring)
        return self.metadata


def provision(registry: SchemaRegistry, engine: Engine, tables: TableBuilder | None = None) -> TableBuilder:
    """Create the tables of every registered schema and join relation.

    Args:
        registry: Registry whose schemas are provisioned.
        engine: Target SQLAlchemy engine.
        tables: Existing TableBuilder to reuse. A new one is built when omitted.

    Returns:
        The TableBuilder holding the created tables.
    """
    tables = tables or TableBuilder(registry)
    metadata = tables.build_all()
    metadata.create_all(engine)
    logger.info(f"Provisioned {len(metadata.tables)} tables: {', '.join(sorted(metadata.tables))}")
    return tables
