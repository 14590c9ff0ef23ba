"""Persisted records.

A Record holds the field values of one stored row and one slot per declared
association. A slot is NOT_LOADED until the association is preloaded or
written; after that it holds ``[]`` / ``None`` (loaded, empty) or the related
records.
"""

from typing import Any

from relationkit.schema.declaration import EntitySchema


class NotLoaded:
    """Marker for association slots that have not been loaded."""

    _instance: "NotLoaded | None" = None

    def __new__(cls) -> "NotLoaded":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<association not loaded>"

    def __reduce__(self) -> str:
        return "NOT_LOADED"


NOT_LOADED = NotLoaded()


class Record:
    """A persisted entity instance with its fields and association slots."""

    def __init__(
        self,
        schema: EntitySchema,
        fields: dict[str, Any],
        associations: dict[str, Any] | None = None,
    ):
        self.schema = schema
        self.fields = {name: fields.get(name) for name in schema.field_names}
        self.associations: dict[str, Any] = dict.fromkeys(schema.association_names, NOT_LOADED)
        for name, value in (associations or {}).items():
            schema.association(name)
            self.associations[name] = value

    @property
    def id(self) -> Any:
        return self.fields[self.schema.primary_key]

    @property
    def schema_name(self) -> str:
        return self.schema.name

    def __getattr__(self, name: str) -> Any:
        # only called when normal attribute lookup fails
        if name.startswith("_") or name in ("schema", "fields", "associations"):
            raise AttributeError(name)
        if name in self.fields:
            return self.fields[name]
        if name in self.associations:
            return self.associations[name]
        raise AttributeError(f"'{self.schema.name}' record has no field or association '{name}'")

    def __getitem__(self, name: str) -> Any:
        if name in self.fields:
            return self.fields[name]
        if name in self.associations:
            return self.associations[name]
        raise KeyError(name)

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except KeyError:
            return default

    def is_loaded(self, association_name: str) -> bool:
        """Whether the association slot holds loaded data (possibly empty)."""
        self.schema.association(association_name)
        return self.associations[association_name] is not NOT_LOADED

    def set_association(self, association_name: str, value: Any) -> None:
        self.schema.association(association_name)
        self.associations[association_name] = value

    def copy(self) -> "Record":
        return Record(self.schema, dict(self.fields), dict(self.associations))

    def to_dict(self) -> dict[str, Any]:
        """Fields plus every loaded association, recursively."""
        result = dict(self.fields)
        for name, value in self.associations.items():
            if value is NOT_LOADED:
                continue
            if isinstance(value, list):
                result[name] = [item.to_dict() for item in value]
            elif isinstance(value, Record):
                result[name] = value.to_dict()
            else:
                result[name] = value
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return (
            self.schema.name == other.schema.name
            and self.fields == other.fields
            and self.associations == other.associations
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        shown = ", ".join(f"{k}={v!r}" for k, v in self.fields.items())
        return f"<{self.schema.name} {shown}>"
