"""Repository service: the application-facing entry point of RelationKit.

Bundles a registry, its tables, a session factory, a changeset validator,
the association writer and the preload executor behind one object.
"""

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from relationkit.changeset.casting import ChangesetValidator
from relationkit.changeset.changeset import Changeset
from relationkit.config import RelationKitConfig
from relationkit.exceptions import SessionNotSetError
from relationkit.orm.connection import DBConnection
from relationkit.orm.preload import PreloadExecutor
from relationkit.orm.query import Query
from relationkit.orm.record import Record
from relationkit.orm.tables import TableBuilder, provision
from relationkit.orm.uow import AssociationUnitOfWork
from relationkit.orm.writer import AssociationWriter
from relationkit.schema.declaration import EntitySchema
from relationkit.schema.loader import load_registry
from relationkit.schema.registry import SchemaRegistry

logger = logging.getLogger("RelationKit")


class RepoService:
    """Read and write records of one registry.

    Example:
        >>> service = RepoService(session_factory, registry)
        >>> cs = service.changesets.cast("Movie", {"title": "Up"}, ["title"])
        >>> movie = service.insert(cs)
        >>> service.preload([movie], "characters")
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: SchemaRegistry,
        tables: TableBuilder | None = None,
        config: RelationKitConfig | None = None,
    ):
        """Initialize the service.

        Args:
            session_factory: SQLAlchemy sessionmaker for database connections.
            registry: Registry of the schemas the service reads and writes.
            tables: TableBuilder of the registry. Built when omitted.
            config: Runtime configuration (default on-replace policy).
        """
        self.session_factory = session_factory
        self.registry = registry
        self.tables = tables or TableBuilder(registry)
        self.config = config or RelationKitConfig()
        self.changesets = ChangesetValidator(registry, self.tables.resolver)
        self.writer = AssociationWriter(session_factory, self.tables, self.config)

    @classmethod
    def from_config(cls, config: RelationKitConfig, registry: SchemaRegistry | None = None) -> "RepoService":
        """Build a service (and provision its tables) from a loaded configuration.

        Args:
            config: Configuration holding the database URL.
            registry: Registry to serve. Loaded from ``config.schemas_path`` when omitted.

        Raises:
            ValueError: If neither a registry nor ``schemas_path`` is given.
        """
        if registry is None:
            if config.schemas_path is None:
                raise ValueError("A registry or config.schemas_path is required.")  # noqa: TRY003
            registry = load_registry(Path(config.schemas_path))
        connection = DBConnection.from_config(config)
        tables = provision(registry, connection.get_engine())
        return cls(connection.get_session_factory(), registry, tables, config)

    def _create_uow(self) -> AssociationUnitOfWork:
        return AssociationUnitOfWork(self.session_factory, self.tables)

    def _schema(self, schema: EntitySchema | str) -> EntitySchema:
        return self.registry.lookup(schema) if isinstance(schema, str) else schema

    def insert(self, changeset: Changeset) -> Record:
        """Insert the changeset's record with its nested associations."""
        return self.writer.insert(changeset)

    def update(self, changeset: Changeset) -> Record:
        """Update the changeset's record with its nested associations."""
        return self.writer.update(changeset)

    def apply(self, changeset: Changeset) -> Record:
        return self.writer.apply(changeset)

    def delete(self, target: Record | Changeset) -> Record:
        return self.writer.delete(target)

    def get(self, schema: EntitySchema | str, _id: Any, preload: str | Iterable[str] | None = None) -> Record | None:
        """Fetch one record by primary key, optionally preloading associations."""
        with self._create_uow() as uow:
            record = uow.repository(self._schema(schema)).get_by_id(_id)
            if record is not None and preload:
                PreloadExecutor(self._session(uow), self.tables).preload_separate([record], preload)
            return record

    def all(self, query: Query | EntitySchema | str, preload: str | Iterable[str] | None = None) -> list[Record]:
        """Fetch the records of a query (or of a whole schema), optionally preloading associations."""
        if not isinstance(query, Query):
            query = Query(self._schema(query))
        with self._create_uow() as uow:
            executor = PreloadExecutor(self._session(uow), self.tables)
            records = executor.fetch(query)
            if preload:
                executor.preload_separate(records, preload)
            return records

    def preload(self, records: list[Record], associations: str | Iterable[str]) -> list[Record]:
        """Load associations onto already fetched records with one fetch per association."""
        with self._create_uow() as uow:
            return PreloadExecutor(self._session(uow), self.tables).preload_separate(records, associations)

    def preload_join(self, query: Query | EntitySchema | str, association_name: str) -> list[Record]:
        """Fetch the records of a query with one association joined in."""
        if not isinstance(query, Query):
            query = Query(self._schema(query))
        with self._create_uow() as uow:
            return PreloadExecutor(self._session(uow), self.tables).preload_join(query, association_name)

    def assoc(self, records: Record | list[Record], association_name: str) -> list[Record]:
        """Records associated to one or more records through ``association_name``."""
        owners = [records] if isinstance(records, Record) else records
        with self._create_uow() as uow:
            return PreloadExecutor(self._session(uow), self.tables).related(owners, association_name)

    def cast(self, schema: EntitySchema | Record | str, params: Mapping[Any, Any], permitted: list[str]) -> Changeset:
        return self.changesets.cast(schema, params, permitted)

    def count(self, schema: EntitySchema | str) -> int:
        with self._create_uow() as uow:
            return uow.repository(self._schema(schema)).count()

    @staticmethod
    def _session(uow: AssociationUnitOfWork) -> Session:
        if uow.session is None:
            raise SessionNotSetError
        return uow.session
