"""Query/Preload executor.

Loads associations onto already fetched records, either with one extra fetch
per association (``preload_separate``) or by joining the related rows into the
owners' fetch (``preload_join``). Both fill the same slots in the same order.
"""

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from relationkit.exceptions import (
    AssociationNotLoadableError,
    InvalidAssociationError,
    InvalidJoinSchemaError,
    UnknownAssociationError,
    UnknownSchemaError,
)
from relationkit.orm.query import Query
from relationkit.orm.record import Record
from relationkit.orm.repository.base import GenericRepository
from relationkit.orm.tables import TableBuilder
from relationkit.schema.declaration import EntitySchema
from relationkit.schema.resolver import JoinWiring, Wiring

logger = logging.getLogger("RelationKit")

_OWNER = "o__"
_RELATED = "r__"


def _owner_keys(records: list[Record], key: str) -> list[Any]:
    """Distinct non-null values of ``key``, in record order."""
    return list(dict.fromkeys(r.fields[key] for r in records if r.fields[key] is not None))


class PreloadExecutor:
    """Fetch records and load their associations within one session."""

    def __init__(self, session: Session, tables: TableBuilder):
        self.session = session
        self.tables = tables
        self.resolver = tables.resolver

    def _repository(self, schema: EntitySchema) -> GenericRepository:
        return GenericRepository(self.session, schema, self.tables.table(schema))

    def wiring(self, schema: EntitySchema, association_name: str) -> Wiring:
        """Resolve a wiring, reporting resolution failures as AssociationNotLoadableError."""
        try:
            return self.resolver.wiring_for(schema, association_name)
        except (UnknownAssociationError, UnknownSchemaError, InvalidAssociationError, InvalidJoinSchemaError) as e:
            raise AssociationNotLoadableError(schema.name, association_name, str(e)) from e

    def fetch(self, query: Query) -> list[Record]:
        """Run a Query and return its records."""
        repo = self._repository(query.schema)
        return [repo.to_record(row) for row in self.session.execute(query.to_select(repo.table))]

    def preload_separate(self, records: list[Record], associations: str | Iterable[str]) -> list[Record]:
        """Load associations with one extra fetch per association.

        Args:
            records: Records of one schema. Their order is preserved.
            associations: An association name, a dotted path such as
                ``"characters.movie"``, or several of them.

        Returns:
            The same records, with the association slots filled in place.

        Raises:
            AssociationNotLoadableError: If a wiring cannot be resolved.
        """
        paths = [associations] if isinstance(associations, str) else list(associations)
        for path in paths:
            level = records
            for name in path.split("."):
                level = self._load(level, name)
        return records

    def _load(self, records: list[Record], name: str) -> list[Record]:
        """Fill ``name`` on every record and return the distinct related records for the next level."""
        if not records:
            return []
        schema = records[0].schema
        wiring = self.wiring(schema, name)
        keys = _owner_keys(records, wiring.owner_key)
        logger.debug(f"Preloading '{schema.name}.{name}' for {len(keys)} keys")

        if isinstance(wiring, JoinWiring):
            grouped = self._fetch_joined(wiring, keys)
        else:
            related = self._repository(wiring.related).all_by(wiring.related_key, keys)
            grouped = {}
            for record in related:
                grouped.setdefault(record.fields[wiring.related_key], []).append(record)

        loaded: dict[int, Record] = {}
        for record in records:
            matches = grouped.get(record.fields[wiring.owner_key], [])
            if wiring.association.is_many:
                record.set_association(name, list(matches))
            else:
                record.set_association(name, matches[0] if matches else None)
            for match in matches:
                loaded[id(match)] = match
        return list(loaded.values())

    def _fetch_joined(self, wiring: JoinWiring, keys: list[Any]) -> dict[Any, list[Record]]:
        if not keys:
            return {}
        join = self.tables.join_table(wiring)
        related = self.tables.table(wiring.related)
        owner_column = join.c[wiring.join_owner_key].label(f"{_OWNER}key")
        stmt = (
            select(owner_column, *related.c)
            .select_from(join.join(related, join.c[wiring.join_related_key] == related.c[wiring.related_key]))
            .where(join.c[wiring.join_owner_key].in_(keys))
            .order_by(related.c[wiring.related.primary_key])
        )
        grouped: dict[Any, list[Record]] = {}
        for row in self.session.execute(stmt):
            mapping = row._mapping
            record = Record(wiring.related, {name: mapping[related.c[name]] for name in wiring.related.field_names})
            grouped.setdefault(mapping[f"{_OWNER}key"], []).append(record)
        return grouped

    def preload_join(self, query: Query, association_name: str) -> list[Record]:
        """Fetch the records of ``query`` with one association loaded through an outer join.

        Owners come back in the query's order (first-seen order of the joined
        rows); related records within an owner by related primary key.

        Raises:
            AssociationNotLoadableError: If the wiring cannot be resolved.
        """
        owner_schema = query.schema
        wiring = self.wiring(owner_schema, association_name)
        stmt = self._join_select(query, wiring)
        logger.debug(f"Join preloading '{owner_schema.name}.{association_name}'")

        owners: dict[Any, Record] = {}
        children: dict[Any, list[Record]] = {}
        for row in self.session.execute(stmt):
            mapping = row._mapping
            owner_id = mapping[f"{_OWNER}{owner_schema.primary_key}"]
            if owner_id not in owners:
                owners[owner_id] = Record(
                    owner_schema, {name: mapping[f"{_OWNER}{name}"] for name in owner_schema.field_names}
                )
                children[owner_id] = []
            if mapping[f"{_RELATED}{wiring.related.primary_key}"] is None:
                continue
            children[owner_id].append(
                Record(wiring.related, {name: mapping[f"{_RELATED}{name}"] for name in wiring.related.field_names})
            )

        for owner_id, record in owners.items():
            matches = children[owner_id]
            if wiring.association.is_many:
                record.set_association(association_name, matches)
            else:
                record.set_association(association_name, matches[0] if matches else None)
        return list(owners.values())

    def _join_select(self, query: Query, wiring: Wiring) -> Select:
        owner = self.tables.table(query.schema)
        related = self.tables.table(wiring.related).alias(f"{_RELATED}{wiring.related.source}")

        if isinstance(wiring, JoinWiring):
            join = self.tables.join_table(wiring).alias(f"j__{wiring.join_source}")
            source = owner.outerjoin(join, owner.c[wiring.owner_key] == join.c[wiring.join_owner_key]).outerjoin(
                related, join.c[wiring.join_related_key] == related.c[wiring.related_key]
            )
        else:
            source = owner.outerjoin(related, owner.c[wiring.owner_key] == related.c[wiring.related_key])

        columns = [owner.c[name].label(f"{_OWNER}{name}") for name in query.schema.field_names]
        columns += [related.c[name].label(f"{_RELATED}{name}") for name in wiring.related.field_names]
        stmt = query.apply_filters(select(*columns).select_from(source), owner)

        if query.row_limit is not None:
            # limit owners, not joined rows
            owner_pk = owner.c[query.schema.primary_key]
            limited = query.to_select(owner).with_only_columns(owner_pk).subquery()
            stmt = stmt.where(owner_pk.in_(select(limited.c[0])))

        stmt = stmt.order_by(*query.order_clauses(owner), related.c[wiring.related.primary_key].asc())
        return stmt

    def related(self, records: list[Record], association_name: str) -> list[Record]:
        """Records associated to any of ``records``, distinct and ordered by primary key."""
        if not records:
            return []
        schema = records[0].schema
        wiring = self.wiring(schema, association_name)
        keys = _owner_keys(records, wiring.owner_key)
        if not keys:
            return []
        if not isinstance(wiring, JoinWiring):
            return self._repository(wiring.related).all_by(wiring.related_key, keys)

        join = self.tables.join_table(wiring)
        repo = self._repository(wiring.related)
        linked = select(join.c[wiring.join_related_key]).where(join.c[wiring.join_owner_key].in_(keys))
        stmt = select(repo.table).where(repo.table.c[wiring.related_key].in_(linked)).order_by(repo.pk)
        return [repo.to_record(row) for row in self.session.execute(stmt)]
