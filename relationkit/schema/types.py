"""Semantic field types for RelationKit schemas.

Each FieldType knows how to cast untyped external input into a typed Python
value (through a pydantic TypeAdapter in lax mode), how to dump a typed value
back into JSON-compatible primitives, and which SQLAlchemy column type stores it.
"""

import datetime
import decimal
import uuid
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import JSON, BigInteger, Boolean, Date, DateTime, Float, Integer, Numeric, String, Time, Uuid
from sqlalchemy.types import TypeEngine


class FieldType(Enum):
    """Semantic type of a schema field."""

    ID = "id"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    STRING = "string"
    BINARY_ID = "binary_id"
    DATE = "date"
    TIME = "time"
    NAIVE_DATETIME = "naive_datetime"
    MAP = "map"


_PYTHON_TYPES: dict[FieldType, Any] = {
    FieldType.ID: int,
    FieldType.INTEGER: int,
    FieldType.FLOAT: float,
    FieldType.DECIMAL: decimal.Decimal,
    FieldType.BOOLEAN: bool,
    FieldType.STRING: str,
    FieldType.BINARY_ID: uuid.UUID,
    FieldType.DATE: datetime.date,
    FieldType.TIME: datetime.time,
    FieldType.NAIVE_DATETIME: datetime.datetime,
    FieldType.MAP: dict[str, Any],
}


class CastFailure(Exception):
    """Raised by cast_value when a value cannot be converted to a field type."""

    def __init__(self, field_type: FieldType, value: Any, reason: str):
        self.field_type = field_type
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot cast {value!r} to {field_type.value}: {reason}")


@lru_cache(maxsize=None)
def _adapter(field_type: FieldType) -> TypeAdapter:
    return TypeAdapter(_PYTHON_TYPES[field_type])


def coerce_field_type(value: "FieldType | str") -> FieldType:
    """Accept either a FieldType or its string name (``"string"``, ``"id"``, ...)."""
    if isinstance(value, FieldType):
        return value
    return FieldType(value)


def cast_value(field_type: FieldType, value: Any) -> Any:
    """Cast an untyped value into the Python value for ``field_type``.

    ``None`` always casts to ``None``. Naive datetimes stay naive; aware
    datetimes are converted to UTC and made naive so the stored value is
    backend independent.

    Raises:
        CastFailure: If the value cannot be converted.
    """
    if value is None:
        return None
    # bool is an int subclass and pydantic lax mode accepts it for numbers
    if isinstance(value, bool) and field_type in (FieldType.ID, FieldType.INTEGER, FieldType.FLOAT, FieldType.DECIMAL):
        raise CastFailure(field_type, value, "booleans are not numbers")
    try:
        result = _adapter(field_type).validate_python(value)
    except ValidationError as e:
        first = e.errors()[0]
        raise CastFailure(field_type, value, first["msg"]) from e

    if field_type == FieldType.NAIVE_DATETIME and result.tzinfo is not None:
        result = result.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return result


def dump_value(field_type: FieldType, value: Any) -> Any:
    """Dump a typed value back into JSON-compatible primitives."""
    if value is None:
        return None
    return _adapter(field_type).dump_python(value, mode="json")


def column_type(field_type: FieldType) -> TypeEngine:
    """Return the SQLAlchemy column type used to store ``field_type``."""
    if field_type == FieldType.ID:
        # SQLite only auto-increments INTEGER primary keys
        return BigInteger().with_variant(Integer(), "sqlite")
    mapping: dict[FieldType, TypeEngine] = {
        FieldType.INTEGER: Integer(),
        FieldType.FLOAT: Float(),
        FieldType.DECIMAL: Numeric(asdecimal=True),
        FieldType.BOOLEAN: Boolean(),
        FieldType.STRING: String(255),
        FieldType.BINARY_ID: Uuid(),
        FieldType.DATE: Date(),
        FieldType.TIME: Time(),
        FieldType.NAIVE_DATETIME: DateTime(),
        FieldType.MAP: JSON(),
    }
    return mapping[field_type]
