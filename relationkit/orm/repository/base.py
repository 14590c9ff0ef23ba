"""Repository layer for RelationKit.

Implements Generic Repository + Unit of Work patterns over SQLAlchemy Core
tables built from registered schemas. Repositories return Records.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import Row, Table, delete, func, insert, select, update
from sqlalchemy.orm import Session

from relationkit.orm.record import Record
from relationkit.schema.declaration import EntitySchema


class GenericRepository:
    """Generic repository implementing common CRUD operations for one schema.

    Every read is ordered by the primary key, so results come back in
    insertion order for auto-increment keys.
    """

    def __init__(self, session: Session, schema: EntitySchema, table: Table):
        """Initialize repository with a session, a schema and its table.

        Args:
            session: SQLAlchemy session for database operations.
            schema: The schema this repository manages.
            table: The Core table storing the schema.
        """
        self.session = session
        self.schema = schema
        self.table = table

    @property
    def pk(self) -> Any:
        return self.table.c[self.schema.primary_key]

    def to_record(self, row: Row | dict[str, Any]) -> Record:
        mapping = row._mapping if isinstance(row, Row) else row
        return Record(self.schema, {name: mapping[name] for name in self.schema.field_names})

    def _all(self, stmt: Any) -> list[Record]:
        return [self.to_record(row) for row in self.session.execute(stmt)]

    def insert(self, values: dict[str, Any]) -> Record:
        """Insert one row.

        Args:
            values: Column values. Missing fields take the schema defaults.

        Returns:
            The inserted Record, with its primary key.
        """
        row = self.schema.defaults()
        row.update(values)
        if row.get(self.schema.primary_key) is None:
            row.pop(self.schema.primary_key)
        result = self.session.execute(insert(self.table).values(**row))
        row[self.schema.primary_key] = result.inserted_primary_key[0]
        return Record(self.schema, row)

    def update(self, _id: Any, values: dict[str, Any]) -> int:
        """Update one row by primary key.

        Returns:
            Number of rows updated.
        """
        if not values:
            return 0
        result = self.session.execute(update(self.table).where(self.pk == _id).values(**values))
        return result.rowcount

    def update_where(self, column: str, values: Iterable[Any], changes: dict[str, Any]) -> int:
        """Update every row whose ``column`` is in ``values``."""
        values = list(values)
        if not values:
            return 0
        stmt = update(self.table).where(self.table.c[column].in_(values)).values(**changes)
        return self.session.execute(stmt).rowcount

    def get_by_id(self, _id: Any) -> Record | None:
        """Retrieve a record by its primary key.

        Returns:
            The record if found, None otherwise.
        """
        row = self.session.execute(select(self.table).where(self.pk == _id)).first()
        return self.to_record(row) if row is not None else None

    def get_all(self, limit: int | None = None, offset: int | None = None) -> list[Record]:
        """Retrieve all records of this schema, ordered by primary key."""
        stmt = select(self.table).order_by(self.pk)
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        return self._all(stmt)

    def all_by(self, column: str, values: Iterable[Any]) -> list[Record]:
        """Retrieve records whose ``column`` is one of ``values``, ordered by primary key."""
        values = list(values)
        if not values:
            return []
        stmt = select(self.table).where(self.table.c[column].in_(values)).order_by(self.pk)
        return self._all(stmt)

    def find_by(self, **filters: Any) -> list[Record]:
        """Retrieve records matching every ``column=value`` filter."""
        stmt = select(self.table)
        for name, value in filters.items():
            column = self.table.c[name]
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        return self._all(stmt.order_by(self.pk))

    def delete_by_id(self, _id: Any) -> bool:
        """Delete a record by its primary key.

        Returns:
            True if a row was deleted, False if not found.
        """
        result = self.session.execute(delete(self.table).where(self.pk == _id))
        return result.rowcount > 0

    def delete_where(self, column: str, values: Iterable[Any]) -> int:
        """Delete every row whose ``column`` is in ``values``."""
        values = list(values)
        if not values:
            return 0
        return self.session.execute(delete(self.table).where(self.table.c[column].in_(values))).rowcount

    def count(self) -> int:
        return self.session.execute(select(func.count()).select_from(self.table)).scalar_one()

    def exists(self, _id: Any) -> bool:
        return self.get_by_id(_id) is not None
