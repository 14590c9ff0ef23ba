"""Schema declarations, the schema registry and the association resolver."""

from relationkit.schema.declaration import (
    AssociationDeclaration,
    EntitySchema,
    Field,
    belongs_to,
    define_schema,
    field,
    has_many,
    has_one,
    many_to_many,
)
from relationkit.schema.registry import SchemaRegistry
from relationkit.schema.resolver import AssociationResolver, ForeignKeyWiring, JoinWiring, Wiring
from relationkit.schema.types import FieldType

__all__ = [
    "AssociationDeclaration",
    "AssociationResolver",
    "EntitySchema",
    "Field",
    "FieldType",
    "ForeignKeyWiring",
    "JoinWiring",
    "SchemaRegistry",
    "Wiring",
    "belongs_to",
    "define_schema",
    "field",
    "has_many",
    "has_one",
    "many_to_many",
]
