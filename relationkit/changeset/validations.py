"""Changeset validations and constraint declarations.

Validations run against the changeset's changes and append FieldErrors; they
never raise for invalid data. Constraint declarations tell the writer which
data-store constraint violations to convert into field errors.
"""

import re
from collections.abc import Callable, Collection
from typing import Any

from relationkit.changeset.changeset import Changeset, Constraint
from relationkit.config import AssociationKind
from relationkit.exceptions import InvalidAssociationError
from relationkit.schema.declaration import snake_case


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def validate_required(changeset: Changeset, fields: list[str], message: str = "can't be blank") -> Changeset:
    """Require each field to have a non-blank value after the changes are applied.

    Fields that already carry an error (a failed cast, usually) are skipped.
    """
    for name in fields:
        changeset.schema.field(name)
        if changeset.has_error(name):
            continue
        if _blank(changeset.get_field(name)):
            changeset.add_error(name, message, validation="required")
    return changeset


def validate_length(
    changeset: Changeset,
    field: str,
    min: int | None = None,  # noqa: A002
    max: int | None = None,  # noqa: A002
    is_: int | None = None,
) -> Changeset:
    """Validate the length of a string (characters) or of a list / map (items)."""
    value = changeset.changes.get(field)
    if value is None:
        return changeset
    length = len(value)
    unit = "character(s)" if isinstance(value, str) else "item(s)"
    if is_ is not None and length != is_:
        changeset.add_error(field, f"should be {is_} {unit}", validation="length", kind="is", count=is_)
    elif min is not None and length < min:
        changeset.add_error(field, f"should be at least {min} {unit}", validation="length", kind="min", count=min)
    elif max is not None and length > max:
        changeset.add_error(field, f"should be at most {max} {unit}", validation="length", kind="max", count=max)
    return changeset


_NUMBER_CHECKS: dict[str, tuple[Callable[[Any, Any], bool], str]] = {
    "less_than": (lambda value, target: value < target, "must be less than {}"),
    "greater_than": (lambda value, target: value > target, "must be greater than {}"),
    "less_than_or_equal_to": (lambda value, target: value <= target, "must be less than or equal to {}"),
    "greater_than_or_equal_to": (lambda value, target: value >= target, "must be greater than or equal to {}"),
    "equal_to": (lambda value, target: value == target, "must be equal to {}"),
    "not_equal_to": (lambda value, target: value != target, "must be not equal to {}"),
}


def validate_number(changeset: Changeset, field: str, **checks: Any) -> Changeset:
    """Validate a numeric change, e.g. ``validate_number(cs, "age", greater_than=0)``.

    Only the first failing check is reported.
    """
    unknown = set(checks) - set(_NUMBER_CHECKS)
    if unknown:
        raise ValueError(f"Unknown number validations: {', '.join(sorted(unknown))}")  # noqa: TRY003
    value = changeset.changes.get(field)
    if value is None:
        return changeset
    for kind, target in checks.items():
        predicate, message = _NUMBER_CHECKS[kind]
        if not predicate(value, target):
            changeset.add_error(field, message.format(target), validation="number", kind=kind, number=target)
            break
    return changeset


def validate_inclusion(
    changeset: Changeset, field: str, values: Collection[Any], message: str = "is invalid"
) -> Changeset:
    value = changeset.changes.get(field)
    if value is not None and value not in values:
        changeset.add_error(field, message, validation="inclusion", enum=list(values))
    return changeset


def validate_format(
    changeset: Changeset, field: str, pattern: "str | re.Pattern[str]", message: str = "has invalid format"
) -> Changeset:
    value = changeset.changes.get(field)
    if value is None:
        return changeset
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    if not regex.search(str(value)):
        changeset.add_error(field, message, validation="format")
    return changeset


def validate_change(
    changeset: Changeset, field: str, validator: Callable[[str, Any], list[str] | list[tuple[str, str]]]
) -> Changeset:
    """Run a custom validator on a field change.

    The validator returns a list of messages (attached to ``field``) or of
    (field, message) pairs. It is only called when the field is being changed
    to a non-None value.
    """
    value = changeset.changes.get(field)
    if value is None:
        return changeset
    for item in validator(field, value):
        if isinstance(item, tuple):
            changeset.add_error(item[0], item[1], validation="custom")
        else:
            changeset.add_error(field, item, validation="custom")
    return changeset


def unique_constraint(
    changeset: Changeset,
    fields: str | list[str],
    name: str | None = None,
    message: str = "has already been taken",
    error_field: str | None = None,
) -> Changeset:
    """Convert a unique index violation over ``fields`` into a field error."""
    columns = (fields,) if isinstance(fields, str) else tuple(fields)
    for column in columns:
        changeset.schema.field(column)
    constraint_name = name or f"{changeset.schema.source}_{'_'.join(columns)}_index"
    changeset.constraints.append(
        Constraint(
            kind="unique",
            name=constraint_name,
            fields=columns,
            error_field=error_field or columns[0],
            message=message,
        )
    )
    return changeset


def foreign_key_constraint(
    changeset: Changeset, field: str, name: str | None = None, message: str = "does not exist"
) -> Changeset:
    """Convert a foreign key violation on ``field`` into a field error."""
    changeset.schema.field(field)
    changeset.constraints.append(
        Constraint(
            kind="foreign_key",
            name=name or f"{changeset.schema.source}_{field}_fkey",
            fields=(field,),
            error_field=field,
            message=message,
        )
    )
    return changeset


def assoc_constraint(
    changeset: Changeset, association_name: str, name: str | None = None, message: str = "does not exist"
) -> Changeset:
    """Convert a foreign key violation of a belongs_to association into an error on the association."""
    assoc = changeset.schema.association(association_name)
    if assoc.kind != AssociationKind.BELONGS_TO or assoc.foreign_key is None:
        raise InvalidAssociationError(
            changeset.schema.name, association_name, "assoc_constraint requires a belongs_to association"
        )
    changeset.constraints.append(
        Constraint(
            kind="foreign_key",
            name=name or f"{changeset.schema.source}_{assoc.foreign_key}_fkey",
            fields=(assoc.foreign_key,),
            error_field=association_name,
            message=message,
        )
    )
    return changeset


def no_assoc_constraint(
    changeset: Changeset,
    association_name: str,
    name: str | None = None,
    message: str = "are still associated with this entry",
) -> Changeset:
    """Convert the foreign key violation raised when deleting a record that still has related records.

    Only has_many and has_one associations qualify; the error is attached to the association.
    """
    assoc = changeset.schema.association(association_name)
    if assoc.kind not in (AssociationKind.HAS_MANY, AssociationKind.HAS_ONE):
        raise InvalidAssociationError(
            changeset.schema.name, association_name, "no_assoc_constraint requires a has_many or has_one association"
        )
    related = changeset.registry.lookup(assoc.related) if changeset.registry is not None else None
    foreign_key = assoc.foreign_key or f"{snake_case(changeset.schema.name)}_id"
    source = related.source if related is not None else assoc.related
    changeset.constraints.append(
        Constraint(
            kind="foreign_key",
            name=name or f"{source}_{foreign_key}_fkey",
            fields=(foreign_key,),
            error_field=association_name,
            message=message,
        )
    )
    return changeset
