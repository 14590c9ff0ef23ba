from typing import Any


class RelationKitError(Exception):
    """Base class for all RelationKit errors."""


class DuplicateSchemaError(RelationKitError):
    """Raised when a schema name is registered twice."""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        super().__init__(f"Schema '{schema_name}' is already registered.")


class UnknownSchemaError(RelationKitError):
    """Raised when a schema name is not present in the registry."""

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        super().__init__(f"Schema '{schema_name}' is not registered.")


class UnknownFieldError(RelationKitError):
    """Raised when a field name is not declared on a schema."""

    def __init__(self, schema_name: str, field_name: str):
        self.schema_name = schema_name
        self.field_name = field_name
        super().__init__(f"Schema '{schema_name}' has no field '{field_name}'.")


class UnknownAssociationError(RelationKitError):
    """Raised when an association name is not declared on a schema."""

    def __init__(self, schema_name: str, association_name: str):
        self.schema_name = schema_name
        self.association_name = association_name
        super().__init__(f"Schema '{schema_name}' has no association '{association_name}'.")


class InvalidAssociationError(RelationKitError):
    """Raised when an association declaration breaks its wiring invariants."""

    def __init__(self, schema_name: str, association_name: str, reason: str):
        self.schema_name = schema_name
        self.association_name = association_name
        super().__init__(f"Invalid association '{schema_name}.{association_name}': {reason}")


class InvalidJoinSchemaError(RelationKitError):
    """Raised when a join schema does not belong to both sides of a many-to-many association."""

    def __init__(self, join_schema: str, missing: list[str]):
        self.join_schema = join_schema
        self.missing = missing
        missing_str = ", ".join(missing)
        super().__init__(f"Join schema '{join_schema}' must declare belongs_to associations to: {missing_str}.")


class AssociationNotLoadableError(RelationKitError):
    """Raised when an association cannot be preloaded because its wiring cannot be resolved."""

    def __init__(self, schema_name: str, association_name: str, reason: str | None = None):
        self.schema_name = schema_name
        self.association_name = association_name
        message = f"Association '{schema_name}.{association_name}' cannot be loaded"
        super().__init__(f"{message}: {reason}" if reason else f"{message}.")


class AssociationReplaceError(RelationKitError):
    """Raised when a related record would be replaced under the 'raise' on-replace policy."""

    def __init__(self, schema_name: str, association_name: str, related_ids: list[Any]):
        self.schema_name = schema_name
        self.association_name = association_name
        self.related_ids = related_ids
        ids_str = ", ".join(str(_id) for _id in related_ids)
        super().__init__(
            f"Attempting to remove related records ({ids_str}) from '{schema_name}.{association_name}' "
            "but the association's on_replace policy is 'raise'. "
            "Pass every existing entry or configure on_replace to one of "
            "'delete_missing', 'nilify_foreign_key', 'ignore' or 'mark_as_invalid'."
        )


class InvalidChangesetError(RelationKitError):
    """Raised when an invalid changeset is given to a write operation."""

    def __init__(self, changeset: Any):
        self.changeset = changeset
        super().__init__(f"Could not {changeset.action or 'write'} '{changeset.schema.name}': changeset is invalid.")

    @property
    def errors(self) -> dict[str, Any]:
        from relationkit.changeset import traverse_errors

        return traverse_errors(self.changeset)


class ConstraintViolationError(RelationKitError):
    """Raised when the data store rejects a write with a constraint not claimed by the changeset."""

    def __init__(self, kind: str, table: str, constraint: str | None = None, detail: str | None = None):
        self.kind = kind
        self.table = table
        self.constraint = constraint
        self.detail = detail
        target = f"'{constraint}' on '{table}'" if constraint else f"on '{table}'"
        message = f"{kind} constraint violated {target}"
        super().__init__(f"{message}: {detail}" if detail else f"{message}.")


class SessionNotSetError(RelationKitError):
    """Raised when the database session is not set."""

    def __init__(self):
        super().__init__("Database session is not set.")


class StaleRecordError(RelationKitError):
    """Raised when an update targets a record whose row no longer exists."""

    def __init__(self, schema_name: str, record_id: Any):
        self.schema_name = schema_name
        self.record_id = record_id
        super().__init__(f"Cannot update '{schema_name}' id={record_id}: the row no longer exists.")


class InvalidSchemaFileError(RelationKitError):
    """Raised when a schema definition file cannot be turned into schemas."""

    def __init__(self, path: Any, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid schema file '{path}': {reason}")
