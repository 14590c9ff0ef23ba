"""Association resolver.

Turns an AssociationDeclaration into the concrete key wiring needed to load or
persist related records: which column on which side holds the foreign key,
or which join relation carries the pair of keys for many-to-many.
"""

import logging
from dataclasses import dataclass

from relationkit.config import AssociationKind
from relationkit.exceptions import InvalidAssociationError, InvalidJoinSchemaError
from relationkit.schema.declaration import AssociationDeclaration, EntitySchema, snake_case
from relationkit.schema.registry import SchemaRegistry

logger = logging.getLogger("RelationKit")


@dataclass(frozen=True)
class ForeignKeyWiring:
    """Wiring of has_many, has_one and belongs_to associations.

    Owner and related records match when ``owner[owner_key] == related[related_key]``.
    For belongs_to the owner holds the foreign key (``owner_key``); for has_many
    and has_one the related record holds it (``related_key``).
    """

    association: AssociationDeclaration
    owner: EntitySchema
    related: EntitySchema
    owner_key: str
    related_key: str

    @property
    def kind(self) -> AssociationKind:
        return self.association.kind

    @property
    def owner_holds_key(self) -> bool:
        return self.association.kind == AssociationKind.BELONGS_TO

    @property
    def foreign_key(self) -> str:
        return self.owner_key if self.owner_holds_key else self.related_key


@dataclass(frozen=True)
class JoinWiring:
    """Wiring of many_to_many associations.

    A join row links ``owner[owner_key]`` (stored in ``join_owner_key``) to
    ``related[related_key]`` (stored in ``join_related_key``).
    """

    association: AssociationDeclaration
    owner: EntitySchema
    related: EntitySchema
    owner_key: str
    related_key: str
    join_source: str
    join_owner_key: str
    join_related_key: str
    join_schema: EntitySchema | None = None
    unique: bool = True

    @property
    def kind(self) -> AssociationKind:
        return self.association.kind

    @property
    def synthesized(self) -> bool:
        """True when the join relation is an implicit two-column table."""
        return self.join_schema is None


Wiring = ForeignKeyWiring | JoinWiring


class AssociationResolver:
    """Resolve association declarations against a SchemaRegistry.

    Results are cached per (schema, association); the registry is read-only
    once the application has started.
    """

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry
        self._cache: dict[tuple[str, str], Wiring] = {}

    def wiring_for(self, schema: EntitySchema | str, association_name: str) -> Wiring:
        """Return the wiring of ``schema.association_name``.

        Args:
            schema: The owning schema or its registered name.
            association_name: The association to resolve.

        Returns:
            ForeignKeyWiring or JoinWiring.

        Raises:
            UnknownSchemaError: If the owner, related or join schema is not registered.
            UnknownAssociationError: If the owner does not declare the association.
            InvalidAssociationError: If the keys named by the declaration do not exist.
            InvalidJoinSchemaError: If a join schema does not belong to both sides.
        """
        owner = self.registry.lookup(schema) if isinstance(schema, str) else schema
        key = (owner.name, association_name)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        assoc = owner.association(association_name)
        related = self.registry.lookup(assoc.related)
        if assoc.kind == AssociationKind.MANY_TO_MANY:
            wiring: Wiring = self._resolve_join(owner, related, assoc)
        else:
            wiring = self._resolve_foreign_key(owner, related, assoc)

        self._cache[key] = wiring
        logger.debug(f"Resolved wiring for '{owner.name}.{association_name}': {wiring_summary(wiring)}")
        return wiring

    def wirings(self) -> list[Wiring]:
        """Resolve every association of every registered schema."""
        return [self.wiring_for(schema, assoc.name) for schema in self.registry for assoc in schema.associations]

    def join_wirings(self) -> list[JoinWiring]:
        """Distinct synthesized join relations, one per join table."""
        seen: dict[str, JoinWiring] = {}
        for wiring in self.wirings():
            if isinstance(wiring, JoinWiring) and wiring.synthesized and wiring.join_source not in seen:
                seen[wiring.join_source] = wiring
        return list(seen.values())

    def _resolve_foreign_key(
        self, owner: EntitySchema, related: EntitySchema, assoc: AssociationDeclaration
    ) -> ForeignKeyWiring:
        if assoc.kind == AssociationKind.BELONGS_TO:
            owner_key = assoc.foreign_key or f"{assoc.name}_id"
            related_key = assoc.references or related.primary_key
            self._require_field(owner, assoc, owner, owner_key)
            self._require_field(owner, assoc, related, related_key)
        else:
            owner_key = assoc.references or owner.primary_key
            related_key = assoc.foreign_key or f"{snake_case(owner.name)}_id"
            self._require_field(owner, assoc, owner, owner_key)
            self._require_field(owner, assoc, related, related_key)
        return ForeignKeyWiring(
            association=assoc,
            owner=owner,
            related=related,
            owner_key=owner_key,
            related_key=related_key,
        )

    def _resolve_join(self, owner: EntitySchema, related: EntitySchema, assoc: AssociationDeclaration) -> JoinWiring:
        if assoc.join_schema is not None:
            wiring = self._resolve_join_schema(owner, related, assoc)
        else:
            join_keys = assoc.join_keys or (f"{snake_case(owner.name)}_id", f"{snake_case(related.name)}_id")
            if join_keys[0] == join_keys[1]:
                raise InvalidAssociationError(
                    owner.name, assoc.name, "self-referencing many_to_many must declare distinct join_keys"
                )
            wiring = JoinWiring(
                association=assoc,
                owner=owner,
                related=related,
                owner_key=owner.primary_key,
                related_key=related.primary_key,
                join_source=str(assoc.join_through),
                join_owner_key=join_keys[0],
                join_related_key=join_keys[1],
            )
        self._check_shared_join(owner, related, assoc, wiring)
        return wiring

    def _resolve_join_schema(
        self, owner: EntitySchema, related: EntitySchema, assoc: AssociationDeclaration
    ) -> JoinWiring:
        join_schema = self.registry.lookup(str(assoc.join_schema))
        belongs = [a for a in join_schema.associations if a.kind == AssociationKind.BELONGS_TO]

        if assoc.join_keys is not None:
            owner_side = next(
                (a for a in belongs if a.related == owner.name and a.foreign_key == assoc.join_keys[0]), None
            )
            related_side = next(
                (a for a in belongs if a.related == related.name and a.foreign_key == assoc.join_keys[1]), None
            )
        else:
            owner_side = next((a for a in belongs if a.related == owner.name), None)
            related_side = next((a for a in belongs if a.related == related.name and a is not owner_side), None)

        missing = []
        if owner_side is None:
            missing.append(owner.name)
        if related_side is None:
            missing.append(related.name)
        if owner_side is None or related_side is None:
            raise InvalidJoinSchemaError(join_schema.name, missing)

        owner_key = owner_side.references or owner.primary_key
        related_key = related_side.references or related.primary_key
        self._require_field(owner, assoc, owner, owner_key)
        self._require_field(owner, assoc, related, related_key)

        pair = {str(owner_side.foreign_key), str(related_side.foreign_key)}
        unique = any(set(group) == pair for group in join_schema.unique)
        return JoinWiring(
            association=assoc,
            owner=owner,
            related=related,
            owner_key=owner_key,
            related_key=related_key,
            join_source=join_schema.source,
            join_owner_key=str(owner_side.foreign_key),
            join_related_key=str(related_side.foreign_key),
            join_schema=join_schema,
            unique=unique,
        )

    def _check_shared_join(
        self, owner: EntitySchema, related: EntitySchema, assoc: AssociationDeclaration, wiring: JoinWiring
    ) -> None:
        """Both sides of a many-to-many must name the same join relation."""
        if owner.name == related.name:
            return
        back = [
            a for a in related.associations if a.kind == AssociationKind.MANY_TO_MANY and a.related == owner.name
        ]
        if not back:
            return
        for candidate in back:
            if candidate.join_schema is not None and candidate.join_schema == assoc.join_schema:
                return
            if candidate.join_through is not None and candidate.join_through == assoc.join_through:
                if candidate.join_keys is None or tuple(candidate.join_keys) == (
                    wiring.join_related_key,
                    wiring.join_owner_key,
                ):
                    return
        raise InvalidAssociationError(
            owner.name,
            assoc.name,
            f"'{related.name}' declares the inverse association through a different join relation",
        )

    @staticmethod
    def _require_field(owner: EntitySchema, assoc: AssociationDeclaration, schema: EntitySchema, name: str) -> None:
        if not schema.has_field(name):
            raise InvalidAssociationError(owner.name, assoc.name, f"'{schema.name}' has no key field '{name}'")


def wiring_summary(wiring: Wiring) -> str:
    """Short human readable description of a wiring."""
    if isinstance(wiring, JoinWiring):
        via = f"schema {wiring.join_schema.name}" if wiring.join_schema else "table"
        return (
            f"{wiring.owner.source}.{wiring.owner_key} <- {wiring.join_source}.{wiring.join_owner_key} / "
            f"{wiring.join_source}.{wiring.join_related_key} -> {wiring.related.source}.{wiring.related_key} "
            f"(join {via}{', unique pair' if wiring.unique else ''})"
        )
    if wiring.owner_holds_key:
        return f"{wiring.owner.source}.{wiring.owner_key} -> {wiring.related.source}.{wiring.related_key}"
    return f"{wiring.owner.source}.{wiring.owner_key} <- {wiring.related.source}.{wiring.related_key}"
