"""Immutable query objects over one schema."""

from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy import Select, Table, select

from relationkit.schema.declaration import EntitySchema


@dataclass(frozen=True)
class Query:
    """A read of one schema: equality / ``in`` filters, ordering and a limit.

    Every builder method returns a new Query.

    Example:
        >>> Query(movie).where(title="Up").order_by("-release_date").limit(10)
    """

    schema: EntitySchema
    filters: tuple[tuple[str, str, Any], ...] = ()
    ordering: tuple[tuple[str, bool], ...] = ()
    row_limit: int | None = None

    def where(self, **equals: Any) -> "Query":
        """Filter on ``field == value`` (``IS NULL`` for None)."""
        for name in equals:
            self.schema.field(name)
        return replace(self, filters=self.filters + tuple(("eq", name, value) for name, value in equals.items()))

    def where_in(self, field_name: str, values: list[Any]) -> "Query":
        self.schema.field(field_name)
        return replace(self, filters=self.filters + (("in", field_name, tuple(values)),))

    def order_by(self, *fields: str) -> "Query":
        """Order by fields; a leading ``-`` sorts descending."""
        ordering = []
        for name in fields:
            descending = name.startswith("-")
            name = name.lstrip("-")
            self.schema.field(name)
            ordering.append((name, descending))
        return replace(self, ordering=self.ordering + tuple(ordering))

    def limit(self, count: int) -> "Query":
        return replace(self, row_limit=count)

    def apply_filters(self, stmt: Select, table: Table) -> Select:
        for op, name, value in self.filters:
            column = table.c[name]
            if op == "in":
                stmt = stmt.where(column.in_(value))
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        return stmt

    def order_clauses(self, table: Table) -> list[Any]:
        """ORDER BY clauses, always ending with the primary key."""
        clauses = [table.c[name].desc() if descending else table.c[name].asc() for name, descending in self.ordering]
        if self.schema.primary_key not in {name for name, _ in self.ordering}:
            clauses.append(table.c[self.schema.primary_key].asc())
        return clauses

    def to_select(self, table: Table) -> Select:
        """The full SELECT of this query against ``table``."""
        stmt = self.apply_filters(select(table), table).order_by(*self.order_clauses(table))
        if self.row_limit is not None:
            stmt = stmt.limit(self.row_limit)
        return stmt
