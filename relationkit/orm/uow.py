"""Unit of Work for RelationKit.

Groups every repository operation of one top-level read or write into a
single session and transaction.
"""

from typing import Any

from sqlalchemy.orm import Session, sessionmaker
from typing_extensions import Self

from relationkit.exceptions import SessionNotSetError
from relationkit.orm.repository.base import GenericRepository
from relationkit.orm.repository.join import JoinRepository
from relationkit.orm.tables import TableBuilder
from relationkit.schema.declaration import EntitySchema
from relationkit.schema.resolver import JoinWiring


class AssociationUnitOfWork:
    """Unit of Work pattern for managing database transactions.

    Provides:
    - Session lifecycle management (context manager)
    - Transaction operations (commit, rollback, flush)
    - Lazily created, cached repositories per schema and per join relation

    Example:
        >>> with AssociationUnitOfWork(session_factory, tables) as uow:
        ...     movie = uow.repository("Movie").insert({"title": "Up"})
        ...     uow.commit()
    """

    def __init__(self, session_factory: sessionmaker[Session], tables: TableBuilder):
        """Initialize Unit of Work with a session factory and the table builder.

        Args:
            session_factory: SQLAlchemy sessionmaker instance.
            tables: TableBuilder of the registry being written.
        """
        self.session_factory = session_factory
        self.tables = tables
        self.session: Session | None = None
        self._repositories: dict[str, GenericRepository] = {}
        self._join_repositories: dict[str, JoinRepository] = {}

    def __enter__(self) -> Self:
        """Enter the context manager and create a new session.

        Returns:
            Self for method chaining.
        """
        self.session = self.session_factory()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the context manager and clean up session.

        Automatically rolls back if an exception occurred.
        """
        if exc_type is not None:
            self.rollback()
        if self.session:
            self.session.close()
            self.session = None
        self._reset_repositories()

    def _reset_repositories(self) -> None:
        self._repositories = {}
        self._join_repositories = {}

    def repository(self, schema: EntitySchema | str) -> GenericRepository:
        """Get the repository of a schema.

        Raises:
            SessionNotSetError: If session is not initialized.
        """
        if self.session is None:
            raise SessionNotSetError
        schema = self.tables.registry.lookup(schema) if isinstance(schema, str) else schema
        repo = self._repositories.get(schema.name)
        if repo is None:
            repo = GenericRepository(self.session, schema, self.tables.table(schema))
            self._repositories[schema.name] = repo
        return repo

    def join_repository(self, wiring: JoinWiring) -> JoinRepository:
        """Get the repository of a many-to-many join relation.

        Raises:
            SessionNotSetError: If session is not initialized.
        """
        if self.session is None:
            raise SessionNotSetError
        key = f"{wiring.owner.name}.{wiring.association.name}"
        repo = self._join_repositories.get(key)
        if repo is None:
            repo = JoinRepository(self.session, wiring, self.tables.join_table(wiring))
            self._join_repositories[key] = repo
        return repo

    def available_repositories(self) -> list[str]:
        """Names of the schemas a repository can be created for, sorted."""
        return sorted(self.tables.registry.names())

    def commit(self) -> None:
        """Commit the current transaction."""
        if self.session:
            self.session.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        if self.session:
            self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        if self.session:
            self.session.flush()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(repositories={self.available_repositories()})"
