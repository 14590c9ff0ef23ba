"""Translate data-store integrity errors into constraint descriptions.

SQLite reports the violated columns (``UNIQUE constraint failed: t.a, t.b``)
but not the constraint name, and no detail at all for foreign keys.
PostgreSQL (psycopg) reports the SQLSTATE and the constraint name.
"""

import re
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from relationkit.changeset.changeset import Changeset, Constraint

_PG_STATES = {"23505": "unique", "23503": "foreign_key", "23502": "not_null", "23514": "check"}

_SQLITE_PATTERNS = [
    (re.compile(r"UNIQUE constraint failed: (?P<columns>.+)$"), "unique"),
    (re.compile(r"FOREIGN KEY constraint failed"), "foreign_key"),
    (re.compile(r"NOT NULL constraint failed: (?P<columns>.+)$"), "not_null"),
    (re.compile(r"CHECK constraint failed: (?P<columns>.+)$"), "check"),
]


@dataclass(frozen=True)
class IntegrityViolation:
    """What the data store reported about a rejected statement."""

    kind: str
    table: str | None = None
    columns: tuple[str, ...] = ()
    constraint: str | None = None
    detail: str | None = None


def parse_integrity_error(error: IntegrityError) -> IntegrityViolation:
    """Describe an IntegrityError raised by SQLite or PostgreSQL."""
    orig = error.orig
    message = str(orig).strip().splitlines()[0] if orig is not None else str(error)

    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _PG_STATES:
        diag = getattr(orig, "diag", None)
        return IntegrityViolation(
            kind=_PG_STATES[sqlstate],
            table=getattr(diag, "table_name", None),
            columns=tuple(filter(None, [getattr(diag, "column_name", None)])),
            constraint=getattr(diag, "constraint_name", None),
            detail=message,
        )

    for pattern, kind in _SQLITE_PATTERNS:
        match = pattern.search(message)
        if match is None:
            continue
        qualified = [c.strip() for c in match.groupdict().get("columns", "").split(",") if c.strip()]
        table = qualified[0].split(".", 1)[0] if qualified and "." in qualified[0] else None
        columns = tuple(c.split(".", 1)[-1] for c in qualified)
        return IntegrityViolation(kind=kind, table=table, columns=columns, detail=message)

    return IntegrityViolation(kind="integrity", detail=message)


def match_constraint(changeset: Changeset, violation: IntegrityViolation) -> Constraint | None:
    """Find the constraint declared on ``changeset`` that claims ``violation``.

    A constraint matches by name when the store reports one, otherwise by the
    reported columns. A foreign key violation without any detail (SQLite)
    matches the first declared foreign key constraint.
    """
    candidates = [c for c in changeset.constraints if c.kind == violation.kind]
    if not candidates:
        return None
    if violation.table is not None and violation.table != changeset.schema.source and violation.constraint is None:
        return None
    if violation.constraint is not None:
        return next((c for c in candidates if c.name == violation.constraint), None)
    if violation.columns:
        return next((c for c in candidates if set(c.fields) == set(violation.columns)), None)
    return candidates[0]
