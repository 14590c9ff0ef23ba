from collections.abc import Callable, Generator
from typing import Any

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from relationkit.config import RelationKitConfig
from relationkit.orm.connection import DBConnection
from relationkit.orm.tables import TableBuilder, provision
from relationkit.schema.registry import SchemaRegistry
from relationkit.service import RepoService
from tests.util import build_movie_registry


@pytest.fixture
def db_connection() -> Generator[DBConnection, Any, None]:
    """Create an in-memory SQLite connection, one database per test.

    The engine uses a single shared connection, so every session created
    from it sees the same database.
    """
    connection = DBConnection()

    yield connection

    connection.dispose()


@pytest.fixture
def db_engine(db_connection: DBConnection) -> Engine:
    return db_connection.get_engine()


@pytest.fixture
def session_factory(db_connection: DBConnection) -> sessionmaker[Session]:
    return db_connection.get_session_factory()


@pytest.fixture
def db_session(session_factory) -> Generator[Session, Any, None]:
    """Create a new database session for each test.

    The session is rolled back after the test.
    """
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def movie_registry() -> SchemaRegistry:
    return build_movie_registry()


@pytest.fixture
def tables(movie_registry: SchemaRegistry, db_engine: Engine) -> TableBuilder:
    return provision(movie_registry, db_engine)


@pytest.fixture
def service(session_factory, movie_registry, tables) -> RepoService:
    return RepoService(session_factory, movie_registry, tables)


@pytest.fixture
def make_service() -> Generator[Callable[..., RepoService], Any, None]:
    """Build services on fresh in-memory databases for custom registries."""
    connections: list[DBConnection] = []

    def _make(registry: SchemaRegistry, config: RelationKitConfig | None = None) -> RepoService:
        connection = DBConnection()
        connections.append(connection)
        tables = provision(registry, connection.get_engine())
        return RepoService(connection.get_session_factory(), registry, tables, config)

    yield _make

    for connection in connections:
        connection.dispose()
