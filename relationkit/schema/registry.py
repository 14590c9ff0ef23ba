"""Schema registry.

Maps schema names to their EntitySchema. Registration happens once at startup;
afterwards the registry is only read.
"""

import logging
from collections.abc import Iterator

from relationkit.exceptions import DuplicateSchemaError, UnknownSchemaError
from relationkit.schema.declaration import AssociationDeclaration, EntitySchema, validate_association

logger = logging.getLogger("RelationKit")


class SchemaRegistry:
    """Registry of entity schemas, iterated in registration order."""

    def __init__(self, schemas: list[EntitySchema] | None = None):
        self._schemas: dict[str, EntitySchema] = {}
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: EntitySchema) -> EntitySchema:
        """Register a schema.

        Raises:
            DuplicateSchemaError: If a schema with the same name is registered.
            InvalidAssociationError: If one of its associations cannot be wired.
        """
        if schema.name in self._schemas:
            raise DuplicateSchemaError(schema.name)
        for assoc in schema.associations:
            validate_association(schema.name, assoc)
        self._schemas[schema.name] = schema
        logger.debug(f"Registered schema '{schema.name}' (source '{schema.source}')")
        return schema

    def lookup(self, name: str) -> EntitySchema:
        """Return the schema registered under ``name``.

        Raises:
            UnknownSchemaError: If no schema is registered under ``name``.
        """
        schema = self._schemas.get(name)
        if schema is None:
            raise UnknownSchemaError(name)
        return schema

    def association(self, schema_name: str, association_name: str) -> AssociationDeclaration:
        """Return an association declaration by schema and association name."""
        return self.lookup(schema_name).association(association_name)

    def names(self) -> list[str]:
        return list(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __iter__(self) -> Iterator[EntitySchema]:
        return iter(self._schemas.values())

    def __len__(self) -> int:
        return len(self._schemas)

    def __repr__(self) -> str:
        return f"SchemaRegistry(schemas={self.names()})"
