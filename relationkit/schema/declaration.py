"""Schema and association declarations.

Schemas are plain frozen dataclasses built with ``define_schema`` and the
association helpers below::

    movie = define_schema(
        "Movie",
        fields=[field("title", "string"), field("tagline", "string")],
        associations=[
            has_many("characters", "Character", on_replace="delete_missing"),
            has_one("distributor", "Distributor"),
            many_to_many("actors", "Actor", join_through="movies_actors"),
        ],
        timestamps=True,
    )
"""

import re
from dataclasses import dataclass, field as dataclass_field
from typing import Any

from relationkit.config import AssociationKind, OnDelete, OnReplace
from relationkit.exceptions import InvalidAssociationError, UnknownAssociationError, UnknownFieldError
from relationkit.schema.types import FieldType, coerce_field_type

TIMESTAMP_FIELDS = ("inserted_at", "updated_at")


def snake_case(name: str) -> str:
    """Convert ``MovieActor`` to ``movie_actor``."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class Field:
    """A typed field of an entity schema."""

    name: str
    type: FieldType
    default: Any = None
    primary_key: bool = False


@dataclass(frozen=True)
class AssociationDeclaration:
    """A relationship from one schema to another.

    Attributes:
        name: Association name on the owning schema (``characters``).
        kind: has_many, has_one, belongs_to or many_to_many.
        related: Name of the related schema.
        foreign_key: For belongs_to, the key on the owner. For has_many / has_one,
            the key on the related schema. None means derived at resolution time.
        references: Key the foreign key points at. None means the primary key.
        join_through: Table name of an implicit many-to-many join relation.
        join_schema: Schema name of an explicit many-to-many join relation.
        join_keys: (owner join key, related join key) on the join relation.
        on_replace: Policy for related records left out of a nested write.
            None means the configured default.
        on_delete: Policy for related records when the owner is deleted.
    """

    name: str
    kind: AssociationKind
    related: str
    foreign_key: str | None = None
    references: str | None = None
    join_through: str | None = None
    join_schema: str | None = None
    join_keys: tuple[str, str] | None = None
    on_replace: OnReplace | None = None
    on_delete: OnDelete = OnDelete.NOTHING

    @property
    def cardinality(self) -> str:
        return self.kind.cardinality

    @property
    def is_many(self) -> bool:
        return self.kind.cardinality == "many"


@dataclass(frozen=True)
class EntitySchema:
    """An entity schema: a name, its storage source, typed fields and associations.

    Build it with ``define_schema`` so that the primary key, belongs_to foreign
    keys and timestamps are added consistently.
    """

    name: str
    source: str
    fields: tuple[Field, ...]
    associations: tuple[AssociationDeclaration, ...] = ()
    primary_key: str = "id"
    timestamps: bool = False
    unique: tuple[tuple[str, ...], ...] = ()
    _fields_by_name: dict[str, Field] = dataclass_field(default_factory=dict, init=False, repr=False, compare=False)
    _associations_by_name: dict[str, AssociationDeclaration] = dataclass_field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self._fields_by_name.update({f.name: f for f in self.fields})
        self._associations_by_name.update({a.name: a for a in self.associations})

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def association_names(self) -> list[str]:
        return [a.name for a in self.associations]

    def has_field(self, name: str) -> bool:
        return name in self._fields_by_name

    def has_association(self, name: str) -> bool:
        return name in self._associations_by_name

    def field(self, name: str) -> Field:
        try:
            return self._fields_by_name[name]
        except KeyError:
            raise UnknownFieldError(self.name, name) from None

    def association(self, name: str) -> AssociationDeclaration:
        try:
            return self._associations_by_name[name]
        except KeyError:
            raise UnknownAssociationError(self.name, name) from None

    def defaults(self) -> dict[str, Any]:
        """Default values of every field (the shape of a fresh, unsaved record)."""
        return {f.name: f.default for f in self.fields}


def field(name: str, type: "FieldType | str" = FieldType.STRING, default: Any = None) -> Field:  # noqa: A002
    """Declare a schema field."""
    return Field(name=name, type=coerce_field_type(type), default=default)


def _coerce_on_replace(on_replace: "OnReplace | str | None") -> OnReplace | None:
    if on_replace is None or isinstance(on_replace, OnReplace):
        return on_replace
    return OnReplace(on_replace)


def has_many(
    name: str,
    related: str,
    foreign_key: str | None = None,
    references: str | None = None,
    on_replace: "OnReplace | str | None" = None,
    on_delete: "OnDelete | str" = OnDelete.NOTHING,
) -> AssociationDeclaration:
    """Declare that each owner has many ``related`` records carrying ``foreign_key``."""
    return AssociationDeclaration(
        name=name,
        kind=AssociationKind.HAS_MANY,
        related=related,
        foreign_key=foreign_key,
        references=references,
        on_replace=_coerce_on_replace(on_replace),
        on_delete=OnDelete(on_delete),
    )


def has_one(
    name: str,
    related: str,
    foreign_key: str | None = None,
    references: str | None = None,
    on_replace: "OnReplace | str | None" = None,
    on_delete: "OnDelete | str" = OnDelete.NOTHING,
) -> AssociationDeclaration:
    """Declare that each owner has at most one ``related`` record carrying ``foreign_key``."""
    return AssociationDeclaration(
        name=name,
        kind=AssociationKind.HAS_ONE,
        related=related,
        foreign_key=foreign_key,
        references=references,
        on_replace=_coerce_on_replace(on_replace),
        on_delete=OnDelete(on_delete),
    )


def belongs_to(
    name: str,
    related: str,
    foreign_key: str | None = None,
    references: str | None = None,
    on_replace: "OnReplace | str | None" = None,
) -> AssociationDeclaration:
    """Declare that the owner carries ``foreign_key`` pointing at one ``related`` record.

    The foreign key defaults to ``<name>_id`` and is added to the owner's fields
    by ``define_schema``.
    """
    return AssociationDeclaration(
        name=name,
        kind=AssociationKind.BELONGS_TO,
        related=related,
        foreign_key=foreign_key or f"{name}_id",
        references=references,
        on_replace=_coerce_on_replace(on_replace),
    )


def many_to_many(
    name: str,
    related: str,
    join_through: str | None = None,
    join_schema: str | None = None,
    join_keys: tuple[str, str] | None = None,
    on_replace: "OnReplace | str | None" = None,
    on_delete: "OnDelete | str" = OnDelete.NOTHING,
) -> AssociationDeclaration:
    """Declare a many-to-many association through a join table or a join schema.

    Exactly one of ``join_through`` (a table name) or ``join_schema`` (a
    registered schema name) must be given.
    """
    return AssociationDeclaration(
        name=name,
        kind=AssociationKind.MANY_TO_MANY,
        related=related,
        join_through=join_through,
        join_schema=join_schema,
        join_keys=tuple(join_keys) if join_keys else None,
        on_replace=_coerce_on_replace(on_replace),
        on_delete=OnDelete(on_delete),
    )


def validate_association(schema_name: str, assoc: AssociationDeclaration) -> None:
    """Check the per-declaration wiring invariants.

    Raises:
        InvalidAssociationError: If the declaration cannot be wired.
    """
    if assoc.kind == AssociationKind.BELONGS_TO:
        if not assoc.foreign_key:
            raise InvalidAssociationError(schema_name, assoc.name, "belongs_to must name exactly one foreign key")
        if assoc.join_through or assoc.join_schema or assoc.join_keys:
            raise InvalidAssociationError(schema_name, assoc.name, "belongs_to cannot declare a join relation")
    elif assoc.kind == AssociationKind.MANY_TO_MANY:
        if bool(assoc.join_through) == bool(assoc.join_schema):
            raise InvalidAssociationError(
                schema_name, assoc.name, "many_to_many must name exactly one of join_through or join_schema"
            )
        if assoc.join_keys is not None and (len(assoc.join_keys) != 2 or assoc.join_keys[0] == assoc.join_keys[1]):
            raise InvalidAssociationError(schema_name, assoc.name, "join_keys must be two distinct key names")
        if assoc.foreign_key:
            raise InvalidAssociationError(schema_name, assoc.name, "many_to_many uses join_keys, not foreign_key")
    elif assoc.join_through or assoc.join_schema or assoc.join_keys:
        raise InvalidAssociationError(schema_name, assoc.name, f"{assoc.kind.value} cannot declare a join relation")


def define_schema(
    name: str,
    fields: list[Field] | None = None,
    associations: list[AssociationDeclaration] | None = None,
    source: str | None = None,
    primary_key: str = "id",
    timestamps: bool = False,
    unique: list[tuple[str, ...]] | None = None,
) -> EntitySchema:
    """Build an EntitySchema.

    The primary key is added first, then the declared fields, then one foreign
    key field per belongs_to association (unless already declared with the id
    type), then the timestamps.

    Args:
        name: Logical schema name, e.g. ``"Movie"``.
        fields: Declared fields.
        associations: Declared associations.
        source: Table name. Defaults to the snake-cased name plus ``s``.
        primary_key: Name of the primary key field.
        timestamps: Whether to add ``inserted_at`` / ``updated_at``.
        unique: Groups of field names that must be unique together.

    Returns:
        The built EntitySchema.

    Raises:
        InvalidAssociationError: If an association breaks its wiring invariants.
    """
    fields = list(fields or [])
    associations = list(associations or [])

    all_fields: list[Field] = [Field(name=primary_key, type=FieldType.ID, primary_key=True)]
    seen = {primary_key}
    for f in fields:
        if f.name in seen:
            raise ValueError(f"Field '{f.name}' is declared twice on '{name}'.")  # noqa: TRY003
        all_fields.append(f)
        seen.add(f.name)

    seen_assocs: set[str] = set()
    for assoc in associations:
        if assoc.name in seen_assocs or assoc.name in seen:
            raise InvalidAssociationError(name, assoc.name, "name clashes with another field or association")
        seen_assocs.add(assoc.name)
        validate_association(name, assoc)
        if assoc.kind != AssociationKind.BELONGS_TO:
            continue
        fk = assoc.foreign_key
        if fk in seen:
            existing = next(f for f in all_fields if f.name == fk)
            if existing.type not in (FieldType.ID, FieldType.INTEGER, FieldType.BINARY_ID, FieldType.STRING):
                raise InvalidAssociationError(name, assoc.name, f"foreign key field '{fk}' has a non-key type")
            continue
        all_fields.append(Field(name=fk, type=FieldType.ID))
        seen.add(fk)

    if timestamps:
        for ts in TIMESTAMP_FIELDS:
            if ts not in seen:
                all_fields.append(Field(name=ts, type=FieldType.NAIVE_DATETIME))
                seen.add(ts)

    unique_groups = tuple(tuple(group) for group in (unique or []))
    for group in unique_groups:
        for column in group:
            if column not in seen:
                raise UnknownFieldError(name, column)

    return EntitySchema(
        name=name,
        source=source or f"{snake_case(name)}s",
        fields=tuple(all_fields),
        associations=tuple(associations),
        primary_key=primary_key,
        timestamps=timestamps,
        unique=unique_groups,
    )
