"""Load schema definitions from YAML.

Example ``schemas.yaml``::

    schemas:
      - name: Movie
        timestamps: true
        fields:
          title: string
          tagline: string
        associations:
          - {kind: has_many, name: characters, related: Character, on_replace: delete_missing}
          - {kind: many_to_many, name: actors, related: Actor, join_through: movies_actors}
      - name: Character
        fields:
          name: string
          age: integer
        associations:
          - {kind: belongs_to, name: movie, related: Movie}
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from omegaconf import DictConfig, OmegaConf

from relationkit.exceptions import InvalidSchemaFileError
from relationkit.schema.declaration import (
    AssociationDeclaration,
    EntitySchema,
    belongs_to,
    define_schema,
    field,
    has_many,
    has_one,
    many_to_many,
)
from relationkit.schema.registry import SchemaRegistry

logger = logging.getLogger("RelationKit")

ASSOCIATION_BUILDERS: dict[str, Callable[..., AssociationDeclaration]] = {
    "has_many": has_many,
    "has_one": has_one,
    "belongs_to": belongs_to,
    "many_to_many": many_to_many,
}


def _build_association(schema_name: str, raw: dict[str, Any]) -> AssociationDeclaration:
    options = dict(raw)
    kind = options.pop("kind", None)
    builder = ASSOCIATION_BUILDERS.get(str(kind))
    if builder is None:
        raise ValueError(f"Unknown association kind '{kind}' on schema '{schema_name}'.")  # noqa: TRY003
    if "join_keys" in options and options["join_keys"] is not None:
        options["join_keys"] = tuple(options["join_keys"])
    return builder(**options)


def build_schema(raw: dict[str, Any]) -> EntitySchema:
    """Build one EntitySchema from its plain mapping definition."""
    name = raw["name"]
    fields = [field(field_name, field_type) for field_name, field_type in (raw.get("fields") or {}).items()]
    associations = [_build_association(name, assoc) for assoc in raw.get("associations") or []]
    unique = [tuple(group) for group in raw.get("unique") or []]
    return define_schema(
        name,
        fields=fields,
        associations=associations,
        source=raw.get("source"),
        primary_key=raw.get("primary_key", "id"),
        timestamps=bool(raw.get("timestamps", False)),
        unique=unique,
    )


def load_registry(path: Path) -> SchemaRegistry:
    """Load every schema defined in a YAML file into a new SchemaRegistry.

    Args:
        path: Path to the schema definition YAML file.

    Returns:
        SchemaRegistry with the schemas registered in file order.

    Raises:
        InvalidSchemaFileError: If the file is not a ``schemas`` list of valid definitions.
    """
    cfg = OmegaConf.load(path)
    if not isinstance(cfg, DictConfig) or "schemas" not in cfg:
        raise InvalidSchemaFileError(path, "expected a YAML mapping with a 'schemas' list")

    definitions = OmegaConf.to_container(cfg.schemas, resolve=True)
    if not isinstance(definitions, list):
        raise InvalidSchemaFileError(path, "'schemas' must be a list")

    registry = SchemaRegistry()
    for index, raw in enumerate(definitions):
        if not isinstance(raw, dict):
            raise InvalidSchemaFileError(path, f"schema #{index} is not a mapping")
        if "name" not in raw:
            raise InvalidSchemaFileError(path, f"schema #{index} has no 'name'")
        try:
            schema = build_schema(raw)
        except (ValueError, TypeError, AttributeError) as e:
            raise InvalidSchemaFileError(path, f"schema '{raw['name']}': {e}") from e
        registry.register(schema)
    logger.info(f"Loaded {len(registry)} schemas from {path}")
    return registry
