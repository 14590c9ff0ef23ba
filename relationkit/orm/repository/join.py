"""Join relation repository for many-to-many associations."""

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Table, and_, delete, insert, select
from sqlalchemy.orm import Session

from relationkit.schema.resolver import JoinWiring


class JoinRepository:
    """Link and unlink owner / related keys in a join relation.

    Works for synthesized join tables and for explicit join schemas; for the
    latter, declared timestamps are filled on insert.
    """

    def __init__(self, session: Session, wiring: JoinWiring, table: Table):
        self.session = session
        self.wiring = wiring
        self.table = table
        self.owner_column = table.c[wiring.join_owner_key]
        self.related_column = table.c[wiring.join_related_key]

    def link(self, owner_id: Any, related_id: Any) -> None:
        """Insert one join row."""
        values: dict[str, Any] = {self.wiring.join_owner_key: owner_id, self.wiring.join_related_key: related_id}
        join_schema = self.wiring.join_schema
        if join_schema is not None and join_schema.timestamps:
            now = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)
            values.update(inserted_at=now, updated_at=now)
        self.session.execute(insert(self.table).values(**values))

    def unlink(self, owner_id: Any, related_ids: Iterable[Any]) -> int:
        """Delete the join rows between ``owner_id`` and each of ``related_ids``."""
        related_ids = list(related_ids)
        if not related_ids:
            return 0
        stmt = delete(self.table).where(and_(self.owner_column == owner_id, self.related_column.in_(related_ids)))
        return self.session.execute(stmt).rowcount

    def unlink_all(self, owner_id: Any) -> int:
        """Delete every join row of ``owner_id``."""
        return self.session.execute(delete(self.table).where(self.owner_column == owner_id)).rowcount

    def related_ids(self, owner_id: Any) -> list[Any]:
        stmt = select(self.related_column).where(self.owner_column == owner_id)
        return [row[0] for row in self.session.execute(stmt)]
