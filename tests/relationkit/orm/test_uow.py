import pytest

from relationkit.exceptions import SessionNotSetError, UnknownSchemaError
from relationkit.orm.uow import AssociationUnitOfWork


def test_context_manager_lifecycle(session_factory, tables):
    uow = AssociationUnitOfWork(session_factory, tables)
    assert uow.session is None

    with uow:
        assert uow.session is not None

    assert uow.session is None


def test_repository_access_without_session_raises_error(session_factory, tables):
    uow = AssociationUnitOfWork(session_factory, tables)

    with pytest.raises(SessionNotSetError):
        uow.repository("Movie")
    with pytest.raises(SessionNotSetError):
        uow.join_repository(tables.resolver.wiring_for("Movie", "actors"))


def test_repository_lazy_initialization_and_caching(session_factory, tables):
    with AssociationUnitOfWork(session_factory, tables) as uow:
        first_access = uow.repository("Movie")
        second_access = uow.repository(tables.registry.lookup("Movie"))
        join = uow.join_repository(tables.resolver.wiring_for("Movie", "actors"))

        assert first_access is second_access
        assert join is uow.join_repository(tables.resolver.wiring_for("Movie", "actors"))


def test_repository_reset_after_exit(session_factory, tables):
    uow = AssociationUnitOfWork(session_factory, tables)

    with uow:
        uow.repository("Movie")

    assert uow._repositories == {}
    assert uow._join_repositories == {}


def test_unknown_schema(session_factory, tables):
    with AssociationUnitOfWork(session_factory, tables) as uow, pytest.raises(UnknownSchemaError):
        uow.repository("Ghost")


def test_commit_persists(session_factory, tables):
    with AssociationUnitOfWork(session_factory, tables) as uow:
        uow.repository("Movie").insert({"title": "Up"})
        uow.commit()

    with AssociationUnitOfWork(session_factory, tables) as uow:
        assert uow.repository("Movie").count() == 1


def test_rollback_on_exception(session_factory, tables):
    with pytest.raises(RuntimeError), AssociationUnitOfWork(session_factory, tables) as uow:
        uow.repository("Movie").insert({"title": "Up"})
        uow.flush()
        raise RuntimeError("boom")

    with AssociationUnitOfWork(session_factory, tables) as uow:
        assert uow.repository("Movie").count() == 0


def test_transaction_operations(session_factory, tables):
    with AssociationUnitOfWork(session_factory, tables) as uow:
        uow.flush()
        uow.commit()
        uow.rollback()


def test_available_repositories(session_factory, tables):
    uow = AssociationUnitOfWork(session_factory, tables)

    assert uow.available_repositories() == ["Actor", "Character", "Distributor", "Movie"]
    assert "Movie" in repr(uow)
