"""Association writer.

Writes a changeset and every nested association changeset it carries inside
one Unit of Work. Order of operations for one changeset:

1. belongs_to parents are written and their keys put on the changeset's row.
2. The row itself is inserted or updated.
3. has_many / has_one children are written with the row's key as their foreign key.
4. many_to_many related rows are written and join rows inserted.

Related records that exist in the store but are left out of a nested write
are handled by the association's on_replace policy. Any error rolls back the
whole unit.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from relationkit.changeset.changeset import Changeset
from relationkit.config import AssociationKind, OnDelete, OnReplace, RelationKitConfig
from relationkit.exceptions import (
    AssociationReplaceError,
    ConstraintViolationError,
    InvalidChangesetError,
    StaleRecordError,
)
from relationkit.orm.integrity import match_constraint, parse_integrity_error
from relationkit.orm.record import NOT_LOADED, Record
from relationkit.orm.tables import TableBuilder
from relationkit.orm.uow import AssociationUnitOfWork
from relationkit.schema.resolver import AssociationResolver, ForeignKeyWiring, JoinWiring, Wiring

logger = logging.getLogger("RelationKit")


def utc_now() -> datetime:
    """Naive UTC timestamp truncated to seconds."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


class AssociationWriter:
    """Insert, update and delete records together with their nested associations."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        tables: TableBuilder,
        config: RelationKitConfig | None = None,
    ):
        """Initialize the writer.

        Args:
            session_factory: SQLAlchemy sessionmaker used for each Unit of Work.
            tables: TableBuilder of the registry (its resolver is reused).
            config: Runtime configuration. Defaults to RelationKitConfig().
        """
        self.session_factory = session_factory
        self.tables = tables
        self.resolver: AssociationResolver = tables.resolver
        self.config = config or RelationKitConfig()

    def insert(self, changeset: Changeset) -> Record:
        """Insert a new record from ``changeset`` and its nested associations."""
        changeset.action = "insert"
        return self.apply(changeset)

    def update(self, changeset: Changeset) -> Record:
        """Update the persisted record of ``changeset`` and its nested associations."""
        if changeset.data is None:
            raise ValueError("update requires a changeset built from a persisted record.")  # noqa: TRY003
        changeset.action = "update"
        return self.apply(changeset)

    def apply(self, changeset: Changeset) -> Record:
        """Write ``changeset`` and every nested changeset atomically.

        Args:
            changeset: Root changeset. Its action defaults to ``update`` when it
                carries persisted data, ``insert`` otherwise.

        Returns:
            The written Record. Associations that were written are loaded on it.

        Raises:
            InvalidChangesetError: If the changeset (or a nested one) is invalid,
                including constraint violations claimed by declared constraints.
            AssociationReplaceError: If a related record would be dropped under
                the ``raise`` on-replace policy.
            ConstraintViolationError: If the store rejects a write with a
                constraint no changeset declared.
            StaleRecordError: If an update changes fields of a record whose
                row no longer exists.
        """
        if changeset.action is None:
            changeset.action = "update" if changeset.data is not None else "insert"
        if not changeset.valid:
            raise InvalidChangesetError(changeset)

        with AssociationUnitOfWork(self.session_factory, self.tables) as uow:
            try:
                record = self._write(uow, changeset, {})
            except InvalidChangesetError as e:
                logger.warning(f"Rolled back {changeset.action} of '{changeset.schema.name}': invalid changeset")
                if e.changeset is not changeset:
                    raise InvalidChangesetError(changeset) from e
                raise
            except Exception as e:
                logger.warning(f"Rolled back {changeset.action} of '{changeset.schema.name}': {e}")
                raise
            uow.commit()

        logger.info(f"Wrote '{changeset.schema.name}' id={record.id} ({changeset.action})")
        return record

    def delete(self, target: Record | Changeset) -> Record:
        """Delete a persisted record, honouring the on_delete policy of its associations.

        Args:
            target: The record, or a changeset built from it (to carry
                ``no_assoc_constraint`` / ``foreign_key_constraint`` declarations).

        Returns:
            The deleted record.
        """
        changeset = target if isinstance(target, Changeset) else Changeset(schema=target.schema, data=target)
        if changeset.data is None:
            raise ValueError("delete requires a persisted record.")  # noqa: TRY003
        changeset.action = "delete"
        if not changeset.valid:
            raise InvalidChangesetError(changeset)

        with AssociationUnitOfWork(self.session_factory, self.tables) as uow:
            self._delete_record(uow, changeset.data, changeset)
            uow.commit()
        logger.info(f"Deleted '{changeset.schema.name}' id={changeset.data.id}")
        return changeset.data

    @contextmanager
    def _constraint_guard(self, changeset: Changeset) -> Iterator[None]:
        """Turn IntegrityErrors into changeset errors (declared constraints) or ConstraintViolationError."""
        try:
            yield
        except IntegrityError as e:
            violation = parse_integrity_error(e)
            constraint = match_constraint(changeset, violation)
            if constraint is None:
                raise ConstraintViolationError(
                    violation.kind,
                    violation.table or changeset.schema.source,
                    violation.constraint,
                    violation.detail,
                ) from e
            changeset.add_error(
                constraint.error_field, constraint.message, validation=constraint.kind, constraint=constraint.name
            )
            raise InvalidChangesetError(changeset) from e

    def _write(self, uow: AssociationUnitOfWork, changeset: Changeset, overrides: dict[str, Any]) -> Record:
        schema = changeset.schema
        repo = uow.repository(schema)
        values = dict(overrides)
        written: dict[str, Any] = {}

        for name, value in changeset.associations.items():
            wiring = self.resolver.wiring_for(schema, name)
            if wiring.kind == AssociationKind.BELONGS_TO:
                written[name] = self._write_parent(uow, changeset, wiring, value, values)

        values = {**changeset.changes, **values}
        if changeset.data is not None:
            values = {k: v for k, v in values.items() if changeset.data.fields.get(k) != v}
        if schema.timestamps:
            now = utc_now()
            if changeset.data is None:
                values.setdefault("inserted_at", now)
                values.setdefault("updated_at", now)
            elif values:
                values.setdefault("updated_at", now)

        with self._constraint_guard(changeset):
            if changeset.data is None:
                changeset.action = "insert"
                record = repo.insert(values)
            else:
                changeset.action = changeset.action if changeset.action in ("update", "replace") else "update"
                if repo.update(changeset.data.id, values) == 0 and values:
                    raise StaleRecordError(schema.name, changeset.data.id)
                record = Record(schema, {**changeset.data.fields, **values}, dict(changeset.data.associations))
        logger.debug(f"{changeset.action} '{schema.name}' id={record.id} fields={sorted(values)}")

        for name, value in changeset.associations.items():
            wiring = self.resolver.wiring_for(schema, name)
            if isinstance(wiring, JoinWiring):
                written[name] = self._write_joined(uow, changeset, wiring, record, value)
            elif not wiring.owner_holds_key:
                written[name] = self._write_children(uow, changeset, wiring, record, value)

        for name, value in written.items():
            record.set_association(name, value)
        return record

    def _write_parent(
        self,
        uow: AssociationUnitOfWork,
        changeset: Changeset,
        wiring: ForeignKeyWiring,
        value: Changeset | None,
        values: dict[str, Any],
    ) -> Record | None:
        """Write a belongs_to parent and put its key on the owner's row."""
        current_id = changeset.data.fields.get(wiring.owner_key) if changeset.data is not None else None

        if value is None:
            values[wiring.owner_key] = None
            if current_id is not None:
                self._replace_parent(uow, changeset, wiring, current_id)
            return None

        target_id = value.data.fields.get(wiring.related_key) if value.data is not None else value.lookup_id
        if value.data is None and value.lookup_id is not None:
            existing = uow.repository(wiring.related).all_by(wiring.related_key, [value.lookup_id])
            if existing:
                value.data = existing[0]
                value.action = "update"
            else:
                value.lookup_id = None
                target_id = None

        parent = self._write(uow, value, {})
        values[wiring.owner_key] = parent.fields[wiring.related_key]
        if current_id is not None and current_id != target_id:
            self._replace_parent(uow, changeset, wiring, current_id)
        return parent

    def _replace_parent(
        self, uow: AssociationUnitOfWork, changeset: Changeset, wiring: ForeignKeyWiring, old_id: Any
    ) -> None:
        policy = wiring.association.on_replace or self.config.default_on_replace
        name = wiring.association.name
        if policy == OnReplace.RAISE:
            raise AssociationReplaceError(changeset.schema.name, name, [old_id])
        if policy == OnReplace.MARK_AS_INVALID:
            changeset.add_error(name, "is invalid", validation="assoc", type=wiring.kind.value)
            raise InvalidChangesetError(changeset)
        if policy == OnReplace.DELETE_MISSING:
            # the owner row is written after its parents, point it away first
            if changeset.data is not None:
                with self._constraint_guard(changeset):
                    uow.repository(changeset.schema).update(changeset.data.id, {wiring.owner_key: None})
            old = uow.repository(wiring.related).all_by(wiring.related_key, [old_id])
            for record in old:
                self._delete_record(uow, record, changeset)
        elif policy == OnReplace.IGNORE:
            logger.warning(f"Ignoring replaced parent {old_id} of '{changeset.schema.name}.{name}'")

    def _bind_existing(self, nested: Changeset, existing: dict[Any, Record], key: str) -> Any:
        """Match a nested changeset with a currently related record; returns the matched id or None."""
        if nested.data is not None:
            target = nested.data.fields.get(key)
            return target if target in existing else None
        if nested.lookup_id is not None and nested.lookup_id in existing:
            nested.data = existing[nested.lookup_id]
            nested.action = "update"
            return nested.lookup_id
        if nested.lookup_id is not None:
            # the id does not belong to this owner, treat the entry as new
            nested.lookup_id = None
        nested.action = "insert"
        return None

    def _write_children(
        self,
        uow: AssociationUnitOfWork,
        changeset: Changeset,
        wiring: ForeignKeyWiring,
        owner: Record,
        value: list[Changeset] | Changeset | None,
    ) -> list[Record] | Record | None:
        """Write has_many / has_one children with the owner's key as their foreign key."""
        repo = uow.repository(wiring.related)
        owner_id = owner.fields[wiring.owner_key]
        existing = {}
        if changeset.data is not None:
            existing = {r.fields[wiring.related.primary_key]: r for r in repo.all_by(wiring.related_key, [owner_id])}

        entries = value if isinstance(value, list) else ([] if value is None else [value])
        matched: set[Any] = set()
        results: list[Record] = []
        for nested in entries:
            matched_id = self._bind_existing(nested, existing, wiring.related.primary_key)
            if matched_id is not None:
                matched.add(matched_id)
            results.append(self._write(uow, nested, {wiring.related_key: owner_id}))

        missing = [record for key, record in existing.items() if key not in matched]
        self._replace_missing(uow, changeset, wiring, owner, missing)

        if wiring.association.is_many:
            return results
        return results[0] if results else None

    def _write_joined(
        self,
        uow: AssociationUnitOfWork,
        changeset: Changeset,
        wiring: JoinWiring,
        owner: Record,
        value: list[Changeset] | None,
    ) -> list[Record]:
        """Write many_to_many related rows and link them through the join relation."""
        repo = uow.repository(wiring.related)
        join_repo = uow.join_repository(wiring)
        owner_id = owner.fields[wiring.owner_key]
        existing = {}
        if changeset.data is not None:
            linked = join_repo.related_ids(owner_id)
            existing = {r.fields[wiring.related_key]: r for r in repo.all_by(wiring.related_key, linked)}

        matched: set[Any] = set()
        results: list[Record] = []
        for nested in value or []:
            matched_id = self._bind_existing(nested, existing, wiring.related_key)
            related = self._write(uow, nested, {})
            related_id = related.fields[wiring.related_key]
            if matched_id is not None:
                matched.add(matched_id)
            else:
                with self._constraint_guard(changeset):
                    join_repo.link(owner_id, related_id)
            results.append(related)

        missing = [record for key, record in existing.items() if key not in matched]
        self._replace_missing(uow, changeset, wiring, owner, missing)
        return results

    def _replace_missing(
        self,
        uow: AssociationUnitOfWork,
        changeset: Changeset,
        wiring: Wiring,
        owner: Record,
        missing: list[Record],
    ) -> None:
        """Apply the on_replace policy to related records left out of a nested write."""
        if not missing:
            return
        assoc = wiring.association
        policy = assoc.on_replace or self.config.default_on_replace
        missing_ids = [record.id for record in missing]
        logger.debug(f"on_replace={policy.value} for '{changeset.schema.name}.{assoc.name}' ids={missing_ids}")

        if policy == OnReplace.RAISE:
            raise AssociationReplaceError(changeset.schema.name, assoc.name, missing_ids)
        if policy == OnReplace.MARK_AS_INVALID:
            changeset.add_error(assoc.name, "is invalid", validation="assoc", type=assoc.kind.value)
            raise InvalidChangesetError(changeset)
        if policy == OnReplace.IGNORE:
            logger.warning(f"Ignoring {len(missing_ids)} replaced records of '{changeset.schema.name}.{assoc.name}'")
            return

        if isinstance(wiring, JoinWiring):
            # both delete_missing and nilify_foreign_key drop the join rows only
            uow.join_repository(wiring).unlink(owner.fields[wiring.owner_key], missing_ids)
            return

        if policy == OnReplace.DELETE_MISSING:
            for record in missing:
                self._delete_record(uow, record, changeset)
        elif policy == OnReplace.NILIFY_FOREIGN_KEY:
            with self._constraint_guard(changeset):
                uow.repository(wiring.related).update_where(
                    wiring.related.primary_key, missing_ids, {wiring.related_key: None}
                )

    def _delete_record(self, uow: AssociationUnitOfWork, record: Record, changeset: Changeset) -> None:
        """Delete one record after applying the on_delete policy of its has_* and many_to_many associations."""
        schema = record.schema
        for assoc in schema.associations:
            if assoc.kind == AssociationKind.BELONGS_TO or assoc.on_delete == OnDelete.NOTHING:
                continue
            wiring = self.resolver.wiring_for(schema, assoc.name)
            owner_id = record.fields[wiring.owner_key]
            if isinstance(wiring, JoinWiring):
                uow.join_repository(wiring).unlink_all(owner_id)
                continue
            repo = uow.repository(wiring.related)
            if assoc.on_delete == OnDelete.DELETE_ALL:
                for child in repo.all_by(wiring.related_key, [owner_id]):
                    self._delete_record(uow, child, Changeset(schema=child.schema, data=child, action="delete"))
            else:
                with self._constraint_guard(changeset):
                    repo.update_where(wiring.related_key, [owner_id], {wiring.related_key: None})

        with self._constraint_guard(changeset):
            uow.repository(schema).delete_by_id(record.id)
        record.associations = dict.fromkeys(record.associations, NOT_LOADED)
