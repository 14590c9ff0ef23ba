"""Changesets: casting untyped input, validating it and declaring constraints."""

from relationkit.changeset.casting import ChangesetValidator
from relationkit.changeset.changeset import (
    Changeset,
    Constraint,
    FieldCastError,
    FieldError,
    apply_changes,
    dump_changes,
    traverse_errors,
)
from relationkit.changeset.validations import (
    assoc_constraint,
    foreign_key_constraint,
    no_assoc_constraint,
    unique_constraint,
    validate_change,
    validate_format,
    validate_inclusion,
    validate_length,
    validate_number,
    validate_required,
)

__all__ = [
    "Changeset",
    "ChangesetValidator",
    "Constraint",
    "FieldCastError",
    "FieldError",
    "apply_changes",
    "assoc_constraint",
    "dump_changes",
    "foreign_key_constraint",
    "no_assoc_constraint",
    "traverse_errors",
    "unique_constraint",
    "validate_change",
    "validate_format",
    "validate_inclusion",
    "validate_length",
    "validate_number",
    "validate_required",
]
