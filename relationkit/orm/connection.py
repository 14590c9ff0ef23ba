import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from relationkit.config import DEFAULT_DATABASE_URL, RelationKitConfig

logger = logging.getLogger("RelationKit")


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@dataclass
class DBConnection:
    """Database connection configuration.

    The engine is created once and reused by every session factory built from
    this connection, so in-memory SQLite databases stay shared.
    """

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    _engine: Engine | None = field(default=None, init=False, repr=False)

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def get_engine(self) -> Engine:
        """Create (once) a SQLAlchemy engine using the connection configuration."""
        if self._engine is not None:
            return self._engine

        kwargs: dict[str, Any] = {"echo": self.echo}
        if self.is_sqlite and (":memory:" in self.url or self.url.split("://", 1)[-1] in ("", "/")):
            # a single shared connection, otherwise each checkout opens a new empty database
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        elif not self.is_sqlite:
            kwargs["pool_pre_ping"] = True

        engine = create_engine(self.url, **kwargs)
        if self.is_sqlite:
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        logger.info(f"Created engine for {engine.url.render_as_string(hide_password=True)}")
        self._engine = engine
        return engine

    def get_session_factory(self) -> sessionmaker[Session]:
        """Create a SQLAlchemy session factory using the connection configuration."""
        return sessionmaker(bind=self.get_engine())

    def get_scoped_session_factory(self) -> scoped_session[Session]:
        """Create a thread-safe scoped SQLAlchemy session factory."""
        return scoped_session(self.get_session_factory())

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    @classmethod
    def from_config(cls, config: RelationKitConfig) -> "DBConnection":
        """Build a connection from a loaded RelationKitConfig."""
        return cls(url=config.database_url, echo=config.echo)

    @classmethod
    def from_env(cls) -> "DBConnection":
        """Load the connection from ``RELATIONKIT_DATABASE_URL`` / ``RELATIONKIT_ECHO``."""
        return cls.from_config(RelationKitConfig.from_env())
