"""Changesets (drafts).

A Changeset is the working copy of a write: the target schema, the current
data (a persisted Record for updates, None for inserts), the proposed typed
changes, accumulated field errors, declared constraints and nested
association changesets.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from relationkit.schema.declaration import EntitySchema
from relationkit.schema.types import FieldType, dump_value

if TYPE_CHECKING:
    from relationkit.orm.record import Record
    from relationkit.schema.registry import SchemaRegistry


@dataclass
class FieldError:
    """A validation error attached to one field (or association) of a changeset."""

    field: str
    message: str
    validation: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class FieldCastError(FieldError):
    """A value that could not be cast to its field's semantic type."""

    @classmethod
    def for_type(cls, field_name: str, field_type: FieldType, reason: str | None = None) -> "FieldCastError":
        metadata: dict[str, Any] = {"type": field_type.value}
        if reason:
            metadata["reason"] = reason
        return cls(field=field_name, message="is invalid", validation="cast", metadata=metadata)


@dataclass(frozen=True)
class Constraint:
    """A data-store constraint the changeset turns into a field error when violated.

    Attributes:
        kind: ``unique`` or ``foreign_key``.
        name: Constraint (index) name as created by provisioning.
        fields: Columns covered by the constraint.
        error_field: Field the error is attached to.
        message: Error message.
    """

    kind: str
    name: str
    fields: tuple[str, ...]
    error_field: str
    message: str


@dataclass
class Changeset:
    """A validated-or-invalid working copy of proposed field values.

    Attributes:
        schema: Target schema.
        data: The persisted record being changed, or None for a new record.
        params: The raw input the changeset was cast from.
        changes: Typed proposed values, by field name.
        errors: Field errors, in the order they were added.
        associations: Nested association changes. A list of changesets for
            has_many / many_to_many, a changeset or None for has_one / belongs_to.
        constraints: Declared data-store constraints.
        action: ``insert``, ``update``, ``replace`` or ``delete`` once decided.
        lookup_id: Primary key taken from nested input whose owner association
            was not loaded; the writer matches it against the stored records.
        registry: Registry used to resolve related schemas of nested casts.
    """

    schema: EntitySchema
    data: "Record | None" = None
    params: dict[str, Any] | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    errors: list[FieldError] = field(default_factory=list)
    associations: dict[str, Any] = field(default_factory=dict)
    constraints: list[Constraint] = field(default_factory=list)
    action: str | None = None
    lookup_id: Any = None
    registry: "SchemaRegistry | None" = field(default=None, repr=False)

    @property
    def valid(self) -> bool:
        """Valid when it has no errors and every nested changeset is valid."""
        if self.errors:
            return False
        return all(nested.valid for nested in self.nested_changesets())

    @property
    def persisted(self) -> bool:
        return self.data is not None

    def nested_changesets(self, association_name: str | None = None) -> list["Changeset"]:
        """Nested changesets of one association, or of all of them."""
        names = [association_name] if association_name else list(self.associations)
        result: list[Changeset] = []
        for name in names:
            value = self.associations.get(name)
            if value is None:
                continue
            if isinstance(value, list):
                result.extend(value)
            else:
                result.append(value)
        return result

    def get_field(self, name: str, default: Any = None) -> Any:
        """The proposed value of a field, falling back to the current data or the field default."""
        if name in self.changes:
            return self.changes[name]
        if self.data is not None:
            return self.data.fields.get(name, default)
        return self.schema.field(name).default if self.schema.has_field(name) else default

    def get_change(self, name: str, default: Any = None) -> Any:
        return self.changes.get(name, default)

    def put_change(self, name: str, value: Any) -> "Changeset":
        """Put a trusted typed value into the changes without casting."""
        self.schema.field(name)
        if self.data is not None and self.data.fields.get(name) == value:
            self.changes.pop(name, None)
        else:
            self.changes[name] = value
        return self

    def add_error(self, field_name: str, message: str, validation: str = "custom", **metadata: Any) -> "Changeset":
        self.errors.append(FieldError(field=field_name, message=message, validation=validation, metadata=metadata))
        return self

    def errors_on(self, field_name: str) -> list[str]:
        """Messages of every error attached to ``field_name``."""
        return [e.message for e in self.errors if e.field == field_name]

    def has_error(self, field_name: str) -> bool:
        return any(e.field == field_name for e in self.errors)


def apply_changes(changeset: Changeset) -> dict[str, Any]:
    """Return the field values the changeset would produce, without touching the store.

    Nested associations present on the changeset are applied recursively.
    """
    base = dict(changeset.data.fields) if changeset.data is not None else changeset.schema.defaults()
    base.update(changeset.changes)
    for name, value in changeset.associations.items():
        if value is None:
            base[name] = None
        elif isinstance(value, list):
            base[name] = [apply_changes(nested) for nested in value if nested.action not in ("replace", "delete")]
        else:
            base[name] = apply_changes(value)
    return base


def traverse_errors(changeset: Changeset) -> dict[str, Any]:
    """Collect error messages into a nested structure.

    Returns:
        ``{field: [message, ...]}``. Associations with invalid nested changesets
        map to a list of such dicts (one per entry, ``{}`` for valid entries) for
        many-cardinality associations, or to a single dict otherwise.
    """
    result: dict[str, Any] = {}
    for error in changeset.errors:
        result.setdefault(error.field, []).append(error.message)

    for name, value in changeset.associations.items():
        if value is None:
            continue
        if isinstance(value, list):
            nested = [traverse_errors(item) for item in value]
            if any(nested):
                result[name] = nested
        elif not value.valid:
            result[name] = traverse_errors(value)
    return result


def dump_changes(changeset: Changeset) -> dict[str, Any]:
    """Re-serialize typed changes into JSON-compatible primitives."""
    return {name: dump_value(changeset.schema.field(name).type, value) for name, value in changeset.changes.items()}
