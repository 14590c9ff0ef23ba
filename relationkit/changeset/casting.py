"""Changeset casting.

ChangesetValidator is the boundary between untyped external input (form
submissions, JSON bodies, CLI arguments) and typed changesets. It casts
permitted fields, casts nested association input recursively and puts
trusted association values.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from relationkit.changeset.changeset import Changeset, FieldCastError
from relationkit.config import AssociationKind
from relationkit.exceptions import InvalidAssociationError
from relationkit.orm.record import NOT_LOADED, Record
from relationkit.schema.declaration import TIMESTAMP_FIELDS, AssociationDeclaration, EntitySchema
from relationkit.schema.registry import SchemaRegistry
from relationkit.schema.resolver import AssociationResolver, ForeignKeyWiring
from relationkit.schema.types import CastFailure, cast_value

logger = logging.getLogger("RelationKit")

NestedCast = Callable[[EntitySchema | Record, dict[str, Any]], Changeset]

_MISSING = object()


def _is_empty(value: Any) -> bool:
    return isinstance(value, str) and value.strip() == ""


def _normalize_params(params: Mapping[Any, Any] | None) -> dict[str, Any]:
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise TypeError(f"Expected a mapping of parameters, got {type(params).__name__}.")  # noqa: TRY003
    return {str(key): value for key, value in params.items()}


def _entries(raw: Any) -> list[Any] | None:
    """Normalize many-cardinality input: a list, or a mapping of index keys to entries."""
    if isinstance(raw, list | tuple):
        return list(raw)
    if isinstance(raw, Mapping):
        try:
            ordered = sorted(raw.items(), key=lambda item: int(item[0]))
        except (TypeError, ValueError):
            return None
        return [value for _, value in ordered]
    return None


class ChangesetValidator:
    """Build changesets for the schemas of one registry."""

    def __init__(self, registry: SchemaRegistry, resolver: AssociationResolver | None = None):
        self.registry = registry
        self.resolver = resolver or AssociationResolver(registry)

    def _target(self, target: EntitySchema | Record | str) -> tuple[EntitySchema, Record | None]:
        if isinstance(target, Record):
            return target.schema, target
        if isinstance(target, str):
            return self.registry.lookup(target), None
        return target, None

    def cast(
        self,
        target: EntitySchema | Record | str,
        params: Mapping[Any, Any] | None,
        permitted: list[str],
    ) -> Changeset:
        """Cast raw input into a changeset.

        Every permitted field present in ``params`` is converted to its
        semantic type. Absent fields are left untouched; empty strings cast to
        None. A conversion failure records a FieldCastError and casting
        continues with the remaining fields. For persisted records, values
        equal to the current data are not recorded as changes.

        Args:
            target: Schema (or its name) for a new record, or the persisted Record to update.
            params: Untyped mapping of field names to values.
            permitted: Fields that may be cast from ``params``.

        Returns:
            The changeset. Check ``changeset.valid``.

        Raises:
            UnknownFieldError: If a permitted name is not a field of the schema.
        """
        schema, data = self._target(target)
        normalized = _normalize_params(params)
        changeset = Changeset(schema=schema, data=data, params=normalized, registry=self.registry)

        for name in permitted:
            schema_field = schema.field(name)
            if name not in normalized:
                continue
            raw = normalized[name]
            if _is_empty(raw):
                raw = None
            try:
                value = cast_value(schema_field.type, raw)
            except CastFailure as e:
                changeset.errors.append(FieldCastError.for_type(name, schema_field.type, e.reason))
                continue
            if data is not None and data.fields.get(name) == value:
                continue
            changeset.changes[name] = value
        return changeset

    def change(self, target: EntitySchema | Record | str, attrs: Mapping[str, Any] | None = None) -> Changeset:
        """Build a changeset from trusted internal data, skipping casting.

        Association names in ``attrs`` are put with ``put_association``.
        """
        schema, data = self._target(target)
        changeset = Changeset(schema=schema, data=data, registry=self.registry)
        for name, value in (attrs or {}).items():
            if schema.has_association(name):
                self.put_association(changeset, name, value)
            else:
                changeset.put_change(name, value)
        return changeset

    def default_nested_fields(self, owner: EntitySchema, assoc: AssociationDeclaration) -> list[str]:
        """Fields cast from nested input when no ``with_`` callable is given.

        Everything except the primary key, timestamps and the key wired back to the owner.
        """
        related = self.registry.lookup(assoc.related)
        excluded = {related.primary_key, *TIMESTAMP_FIELDS}
        wiring = self.resolver.wiring_for(owner, assoc.name)
        if isinstance(wiring, ForeignKeyWiring) and not wiring.owner_holds_key:
            excluded.add(wiring.related_key)
        return [name for name in related.field_names if name not in excluded]

    def cast_association(
        self,
        changeset: Changeset,
        association_name: str,
        nested_inputs: Any = _MISSING,
        *,
        with_: NestedCast | None = None,
        required: bool = False,
    ) -> Changeset:
        """Cast nested input into nested changesets for one association.

        Args:
            changeset: Parent changeset.
            association_name: Association to cast.
            nested_inputs: List (or index-keyed mapping) of entries for has_many /
                many_to_many, a mapping or None for has_one / belongs_to. When
                omitted, read from ``changeset.params[association_name]``.
            with_: Callable building a nested changeset from (schema or record, entry).
            required: Record ``can't be blank`` when the input is absent or empty.

        Returns:
            The parent changeset, with ``associations[association_name]`` set
            when input was given.
        """
        schema = changeset.schema
        assoc = schema.association(association_name)
        related = self.registry.lookup(assoc.related)

        if nested_inputs is _MISSING:
            nested_inputs = (changeset.params or {}).get(association_name, _MISSING)

        if nested_inputs is _MISSING or nested_inputs is None or nested_inputs == [] or nested_inputs == {}:
            if required:
                changeset.add_error(association_name, "can't be blank", validation="required")
            if nested_inputs is _MISSING:
                return changeset

        permitted = self.default_nested_fields(schema, assoc)

        def build(target: EntitySchema | Record, entry: Any) -> Changeset:
            if with_ is not None:
                return with_(target, entry)
            return self.cast(target, entry, permitted)

        loaded = self._loaded_related(changeset, assoc)
        if assoc.is_many:
            entries = [] if nested_inputs is None else _entries(nested_inputs)
            if entries is None or not all(isinstance(entry, Mapping) for entry in entries):
                changeset.add_error(association_name, "is invalid", validation="assoc", type=assoc.kind.value)
                return changeset
            changeset.associations[association_name] = [
                self._cast_entry(related, entry, loaded, build) for entry in entries
            ]
            logger.debug(f"Cast {len(entries)} '{schema.name}.{association_name}' entries")
        else:
            if nested_inputs is not None and not isinstance(nested_inputs, Mapping):
                changeset.add_error(association_name, "is invalid", validation="assoc", type=assoc.kind.value)
                return changeset
            changeset.associations[association_name] = (
                None if nested_inputs is None else self._cast_entry(related, nested_inputs, loaded, build)
            )
        return changeset

    def _loaded_related(self, changeset: Changeset, assoc: AssociationDeclaration) -> dict[Any, Record] | None:
        """Currently loaded related records keyed by id, or None if the association is not loaded."""
        if changeset.data is None:
            return {}
        current = changeset.data.associations.get(assoc.name, NOT_LOADED)
        if current is NOT_LOADED:
            return None
        if current is None:
            return {}
        if isinstance(current, list):
            return {record.id: record for record in current}
        return {current.id: current}

    def _cast_entry(
        self,
        related: EntitySchema,
        entry: Mapping[Any, Any],
        loaded: dict[Any, Record] | None,
        build: Callable[[EntitySchema | Record, Any], Changeset],
    ) -> Changeset:
        raw_id = _normalize_params(entry).get(related.primary_key)
        entry_id = None
        if raw_id is not None and not _is_empty(raw_id):
            try:
                entry_id = cast_value(related.field(related.primary_key).type, raw_id)
            except CastFailure:
                entry_id = None

        if loaded is not None and entry_id is not None and entry_id in loaded:
            nested = build(loaded[entry_id], entry)
            nested.action = "update"
            return nested

        nested = build(related, entry)
        if loaded is None and entry_id is not None:
            # owner association not loaded, the writer matches the id against the store
            nested.lookup_id = entry_id
            nested.action = None
        else:
            nested.action = "insert"
        return nested

    def put_association(self, changeset: Changeset, association_name: str, value: Any) -> Changeset:
        """Put trusted association data on a changeset without casting.

        ``value`` entries may be persisted Records (kept or linked as they are),
        Changesets (used as given) or mappings (built with ``change``; a mapping
        carrying the primary key is matched against the stored records).
        """
        schema = changeset.schema
        assoc = schema.association(association_name)
        related = self.registry.lookup(assoc.related)

        if assoc.is_many:
            if value is None:
                value = []
            if not isinstance(value, list | tuple):
                raise InvalidAssociationError(schema.name, association_name, "expected a list of related values")
            changeset.associations[association_name] = [self._put_entry(related, item) for item in value]
        else:
            changeset.associations[association_name] = None if value is None else self._put_entry(related, value)
        return changeset

    def _put_entry(self, related: EntitySchema, item: Any) -> Changeset:
        if isinstance(item, Changeset):
            if item.schema.name != related.name:
                raise InvalidAssociationError(related.name, item.schema.name, "changeset targets another schema")
            if item.action is None and item.lookup_id is None:
                item.action = "update" if item.data is not None else "insert"
            return item
        if isinstance(item, Record):
            if item.schema.name != related.name:
                raise InvalidAssociationError(related.name, item.schema.name, "record belongs to another schema")
            nested = Changeset(schema=related, data=item, registry=self.registry, action="update")
            return nested
        if isinstance(item, Mapping):
            attrs = {str(k): v for k, v in item.items()}
            entry_id = attrs.pop(related.primary_key, None)
            nested = self.change(related, attrs)
            if entry_id is not None:
                nested.lookup_id = entry_id
            else:
                nested.action = "insert"
            return nested
        raise InvalidAssociationError(related.name, type(item).__name__, "unsupported association value")

    def build_association(
        self, record: Record, association_name: str, attrs: Mapping[str, Any] | None = None
    ) -> Changeset:
        """Build an insert changeset for a record related to ``record``, with its key wired.

        Only has_many and has_one associations can be built this way.
        """
        assoc = record.schema.association(association_name)
        if assoc.kind not in (AssociationKind.HAS_MANY, AssociationKind.HAS_ONE):
            raise InvalidAssociationError(
                record.schema.name, association_name, "only has_many and has_one associations can be built"
            )
        wiring = self.resolver.wiring_for(record.schema, association_name)
        if not isinstance(wiring, ForeignKeyWiring):
            raise InvalidAssociationError(record.schema.name, association_name, "association has no foreign key")
        changeset = self.change(wiring.related, attrs)
        changeset.put_change(wiring.related_key, record.fields[wiring.owner_key])
        changeset.action = "insert"
        return changeset

