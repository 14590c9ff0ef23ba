"""Test cases for AssociationWriter, through RepoService.

Covers nested inserts and updates, every on_replace policy, on_delete
policies, constraint handling and atomicity of nested writes.
"""

from unittest.mock import patch

import pytest

from relationkit.changeset import assoc_constraint, no_assoc_constraint, unique_constraint, validate_required
from relationkit.config import OnReplace, RelationKitConfig
from relationkit.exceptions import (
    AssociationReplaceError,
    ConstraintViolationError,
    InvalidChangesetError,
    StaleRecordError,
)
from relationkit.orm.record import NOT_LOADED
from relationkit.orm.repository import GenericRepository, JoinRepository
from tests.util import build_movie_registry, insert_movie, names


def update_characters(service, movie, entries):
    changeset = service.cast(movie, {"characters": entries}, [])
    service.changesets.cast_association(changeset, "characters")
    return service.update(changeset)


@pytest.fixture
def up(service):
    return insert_movie(service, "Up", characters=[{"name": "Carl", "age": "78"}, {"name": "Russell"}])


class TestInsert:
    def test_insert_with_nested_children(self, service, up):
        assert up.id is not None
        assert up.inserted_at is not None
        assert up.inserted_at == up.updated_at
        assert names(up.characters) == ["Carl", "Russell"]
        assert [c.age for c in up.characters] == [78, None]
        assert {c.movie_id for c in up.characters} == {up.id}
        assert service.count("Character") == 2

    def test_unwritten_associations_stay_not_loaded(self, up):
        assert up.distributor is NOT_LOADED
        assert up.actors is NOT_LOADED

    def test_insert_belongs_to_parent(self, service):
        changeset = service.cast("Character", {"name": "Carl", "movie": {"title": "Up"}}, ["name"])
        service.changesets.cast_association(changeset, "movie")

        carl = service.insert(changeset)

        assert carl.movie.title == "Up"
        assert carl.movie_id == carl.movie.id
        assert service.count("Movie") == 1

    def test_insert_has_one(self, service):
        changeset = service.cast("Movie", {"title": "Up", "distributor": {"name": "Disney"}}, ["title"])
        service.changesets.cast_association(changeset, "distributor")

        movie = service.insert(changeset)

        assert movie.distributor.name == "Disney"
        assert movie.distributor.movie_id == movie.id

    def test_insert_many_to_many(self, service):
        changeset = service.cast("Movie", {"title": "Up", "actors": [{"name": "Ed"}, {"name": "Jordan"}]}, ["title"])
        service.changesets.cast_association(changeset, "actors")

        movie = service.insert(changeset)

        assert names(movie.actors) == ["Ed", "Jordan"]
        assert names(service.assoc(movie, "actors")) == ["Ed", "Jordan"]

    def test_link_existing_records_with_put_association(self, service):
        changeset = service.cast("Movie", {"title": "Up", "actors": [{"name": "Ed"}]}, ["title"])
        service.changesets.cast_association(changeset, "actors")
        ed = service.insert(changeset).actors[0]

        cars = service.insert(service.changesets.change("Movie", {"title": "Cars", "actors": [ed]}))

        assert names(service.assoc(cars, "actors")) == ["Ed"]
        assert service.count("Actor") == 1

    def test_build_association(self, service):
        movie = insert_movie(service, "Up")
        changeset = service.changesets.build_association(movie, "characters", {"name": "Dug"})

        dug = service.insert(changeset)

        assert dug.movie_id == movie.id
        assert names(service.assoc(movie, "characters")) == ["Dug"]

    def test_invalid_changeset_is_rejected(self, service):
        changeset = validate_required(service.cast("Movie", {"title": ""}, ["title"]), ["title"])

        with pytest.raises(InvalidChangesetError) as exc_info:
            service.insert(changeset)

        assert exc_info.value.errors == {"title": ["can't be blank"]}
        assert service.count("Movie") == 0

    def test_invalid_nested_changeset_is_rejected(self, service):
        changeset = service.cast("Movie", {"title": "Up", "characters": [{"age": "old"}]}, ["title"])
        service.changesets.cast_association(changeset, "characters")

        with pytest.raises(InvalidChangesetError):
            service.insert(changeset)

        assert service.count("Movie") == 0


class TestUpdate:
    def test_update_fields(self, service, up):
        changeset = service.cast(service.get("Movie", up.id), {"tagline": "Adventure is out there!"}, ["tagline"])

        updated = service.update(changeset)

        assert updated.tagline == "Adventure is out there!"
        assert updated.updated_at >= updated.inserted_at
        assert service.get("Movie", up.id).tagline == "Adventure is out there!"

    def test_update_requires_persisted_data(self, service):
        with pytest.raises(ValueError):
            service.update(service.cast("Movie", {"title": "Up"}, ["title"]))

    def test_match_by_id_and_insert_new(self, service, up):
        cars = insert_movie(service, "Cars", characters=[{"name": "Lightning"}])
        carl, russell = service.get("Movie", up.id, preload="characters").characters
        loaded = service.get("Movie", up.id, preload="characters")

        updated = update_characters(
            service,
            loaded,
            [{"id": carl.id, "name": "Carl Fredricksen"}, {"id": russell.id}, {"name": "Kevin"}],
        )

        assert names(updated.characters) == ["Carl Fredricksen", "Russell", "Kevin"]
        assert updated.characters[0].id == carl.id
        assert names(service.assoc(up, "characters")) == ["Carl Fredricksen", "Russell", "Kevin"]
        assert names(service.assoc(cars, "characters")) == ["Lightning"]

    def test_id_of_another_owner_inserts_a_new_record(self, service, up):
        cars = insert_movie(service, "Cars", characters=[{"name": "Lightning"}])
        lightning = cars.characters[0]
        loaded = service.get("Movie", up.id, preload="characters")
        entries = [{"id": c.id} for c in loaded.characters] + [{"id": lightning.id, "name": "Impostor"}]

        update_characters(service, loaded, entries)

        assert names(service.assoc(up, "characters")) == ["Carl", "Russell", "Impostor"]
        assert service.get("Character", lightning.id).name == "Lightning"
        assert service.get("Character", lightning.id).movie_id == cars.id

    def test_unloaded_association_matches_ids_against_the_store(self, service, up):
        carl, russell = up.characters
        unloaded = service.get("Movie", up.id)

        updated = update_characters(service, unloaded, [{"id": carl.id, "name": "Carl F."}, {"id": russell.id}])

        assert names(updated.characters) == ["Carl F.", "Russell"]
        assert service.count("Character") == 2

    def test_unchanged_update_keeps_updated_at(self, service, up):
        loaded = service.get("Movie", up.id, preload="characters")

        updated = update_characters(service, loaded, [{"id": c.id} for c in loaded.characters])

        assert updated.updated_at == up.updated_at

    def test_update_of_deleted_record_raises(self, service):
        up = insert_movie(service, "Up")
        service.delete(up)

        with pytest.raises(StaleRecordError) as exc_info:
            service.update(service.cast(up, {"title": "Down"}, ["title"]))

        assert exc_info.value.record_id == up.id
        assert service.count("Movie") == 0


class TestOnReplace:
    def test_raise_is_the_default(self, service, up):
        loaded = service.get("Movie", up.id, preload="characters")

        with pytest.raises(AssociationReplaceError) as exc_info:
            update_characters(service, loaded, [{"id": loaded.characters[0].id}, {"name": "Kevin"}])

        assert exc_info.value.related_ids == [loaded.characters[1].id]
        assert names(service.assoc(up, "characters")) == ["Carl", "Russell"]

    def test_configured_default(self, make_service):
        service = make_service(build_movie_registry(), RelationKitConfig(default_on_replace=OnReplace.DELETE_MISSING))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])
        loaded = service.get("Movie", movie.id, preload="characters")

        update_characters(service, loaded, [{"id": loaded.characters[0].id}])

        assert service.count("Character") == 1

    def test_delete_missing(self, make_service):
        service = make_service(build_movie_registry(characters_on_replace="delete_missing"))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])
        loaded = service.get("Movie", movie.id, preload="characters")

        updated = update_characters(service, loaded, [{"id": loaded.characters[0].id}, {"name": "Kevin"}])

        assert names(updated.characters) == ["Carl", "Kevin"]
        assert service.count("Character") == 2
        assert service.get("Character", loaded.characters[1].id) is None

    def test_nilify_foreign_key(self, make_service):
        service = make_service(build_movie_registry(characters_on_replace="nilify_foreign_key"))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])
        loaded = service.get("Movie", movie.id, preload="characters")

        update_characters(service, loaded, [{"id": loaded.characters[0].id}])

        russell = service.get("Character", loaded.characters[1].id)
        assert russell.movie_id is None
        assert names(service.assoc(movie, "characters")) == ["Carl"]

    def test_mark_as_invalid(self, make_service):
        service = make_service(build_movie_registry(characters_on_replace="mark_as_invalid"))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])
        loaded = service.get("Movie", movie.id, preload="characters")

        with pytest.raises(InvalidChangesetError) as exc_info:
            update_characters(service, loaded, [{"name": "Kevin"}])

        assert exc_info.value.errors == {"characters": ["is invalid"]}
        assert service.count("Character") == 2

    def test_ignore(self, make_service):
        service = make_service(build_movie_registry(characters_on_replace="ignore"))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])
        loaded = service.get("Movie", movie.id, preload="characters")

        update_characters(service, loaded, [{"id": loaded.characters[0].id}])

        assert names(service.assoc(movie, "characters")) == ["Carl", "Russell"]

    def test_has_one_replace(self, service):
        changeset = service.cast("Movie", {"title": "Up", "distributor": {"name": "Disney"}}, ["title"])
        service.changesets.cast_association(changeset, "distributor")
        movie = service.insert(changeset)
        loaded = service.get("Movie", movie.id, preload="distributor")

        changeset = service.cast(loaded, {"distributor": {"name": "Pixar"}}, [])
        service.changesets.cast_association(changeset, "distributor")
        updated = service.update(changeset)

        assert updated.distributor.name == "Pixar"
        assert service.count("Distributor") == 1
        assert names(service.assoc(movie, "distributor")) == ["Pixar"]

    def test_many_to_many_replace_removes_join_rows_only(self, service):
        changeset = service.cast("Movie", {"title": "Up", "actors": [{"name": "Ed"}, {"name": "Jordan"}]}, ["title"])
        service.changesets.cast_association(changeset, "actors")
        movie = service.insert(changeset)
        loaded = service.get("Movie", movie.id, preload="actors")

        changeset = service.cast(loaded, {"actors": [{"id": loaded.actors[0].id}]}, [])
        service.changesets.cast_association(changeset, "actors")
        service.update(changeset)

        assert names(service.assoc(movie, "actors")) == ["Ed"]
        assert service.count("Actor") == 2

    def test_belongs_to_replace_raises_by_default(self, service):
        changeset = service.cast("Character", {"name": "Carl", "movie": {"title": "Up"}}, ["name"])
        service.changesets.cast_association(changeset, "movie")
        carl = service.insert(changeset)
        loaded = service.get("Character", carl.id, preload="movie")

        changeset = service.cast(loaded, {"movie": {"title": "Cars"}}, [])
        service.changesets.cast_association(changeset, "movie")
        with pytest.raises(AssociationReplaceError):
            service.update(changeset)

        assert service.count("Movie") == 1
        assert service.get("Character", carl.id).movie_id == carl.movie_id


class TestConstraints:
    def test_unique_constraint(self, service):
        insert_movie(service, "Up")
        changeset = unique_constraint(service.cast("Movie", {"title": "Up"}, ["title"]), "title")

        with pytest.raises(InvalidChangesetError) as exc_info:
            service.insert(changeset)

        assert exc_info.value.errors == {"title": ["has already been taken"]}
        assert changeset.errors[0].metadata["constraint"] == "movies_title_index"

    def test_undeclared_unique_violation(self, service):
        insert_movie(service, "Up")

        with pytest.raises(ConstraintViolationError) as exc_info:
            service.insert(service.cast("Movie", {"title": "Up"}, ["title"]))

        assert exc_info.value.kind == "unique"
        assert service.count("Movie") == 1

    def test_assoc_constraint(self, service):
        changeset = service.cast("Character", {"name": "Carl", "movie_id": "999"}, ["name", "movie_id"])
        assoc_constraint(changeset, "movie")

        with pytest.raises(InvalidChangesetError) as exc_info:
            service.insert(changeset)

        assert exc_info.value.errors == {"movie": ["does not exist"]}

    def test_nested_constraint_error_reports_the_root(self, service):
        insert_movie(service, "Up")
        changeset = service.cast("Character", {"name": "Carl", "movie": {"title": "Up"}}, ["name"])

        def movie_changeset(target, entry):
            return unique_constraint(service.cast(target, entry, ["title"]), "title")

        service.changesets.cast_association(changeset, "movie", with_=movie_changeset)

        with pytest.raises(InvalidChangesetError) as exc_info:
            service.insert(changeset)

        assert exc_info.value.changeset is changeset
        assert exc_info.value.errors == {"movie": {"title": ["has already been taken"]}}
        assert service.count("Character") == 0


class TestDelete:
    def test_delete_without_children(self, service):
        movie = insert_movie(service, "Up")

        deleted = service.delete(movie)

        assert deleted.id == movie.id
        assert service.get("Movie", movie.id) is None

    def test_no_assoc_constraint(self, service, up):
        changeset = no_assoc_constraint(service.changesets.change(up), "characters")

        with pytest.raises(InvalidChangesetError) as exc_info:
            service.delete(changeset)

        assert exc_info.value.errors == {"characters": ["are still associated with this entry"]}
        assert service.count("Movie") == 1

    def test_undeclared_foreign_key_violation(self, service, up):
        with pytest.raises(ConstraintViolationError) as exc_info:
            service.delete(up)

        assert exc_info.value.kind == "foreign_key"

    def test_on_delete_delete_all(self, make_service):
        service = make_service(build_movie_registry(characters_on_delete="delete_all"))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])

        service.delete(movie)

        assert service.count("Movie") == 0
        assert service.count("Character") == 0

    def test_on_delete_nilify_all(self, make_service):
        service = make_service(build_movie_registry(characters_on_delete="nilify_all"))
        movie = insert_movie(service, "Up", characters=[{"name": "Carl"}])
        carl = movie.characters[0]

        deleted = service.delete(movie)

        assert deleted.characters is NOT_LOADED
        assert service.count("Character") == 1
        assert service.get("Character", carl.id).movie_id is None


def test_nested_write_is_atomic(service):
    original_insert = GenericRepository.insert
    calls = []

    def failing_insert(self, values):
        calls.append(self.schema.name)
        if len(calls) == 3:
            raise RuntimeError("disk full")
        return original_insert(self, values)

    with patch.object(GenericRepository, "insert", failing_insert), pytest.raises(RuntimeError):
        insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])

    assert calls == ["Movie", "Character", "Character"]
    assert service.count("Movie") == 0
    assert service.count("Character") == 0


def test_nested_replace_is_atomic(make_service):
    service = make_service(build_movie_registry(characters_on_replace="delete_missing"))
    movie = insert_movie(service, "Up", characters=[{"name": "Carl"}, {"name": "Russell"}])
    loaded = service.get("Movie", movie.id, preload="characters")
    carl = loaded.characters[0]

    with (
        patch.object(GenericRepository, "delete_by_id", side_effect=RuntimeError("disk full")),
        pytest.raises(RuntimeError),
    ):
        update_characters(service, loaded, [{"id": carl.id, "name": "Carl F."}, {"name": "Kevin"}])

    assert names(service.assoc(movie, "characters")) == ["Carl", "Russell"]
    assert service.count("Character") == 2


def test_nested_unlink_is_atomic(service):
    changeset = service.cast("Movie", {"title": "Up", "actors": [{"name": "Ed"}, {"name": "Jordan"}]}, ["title"])
    service.changesets.cast_association(changeset, "actors")
    movie = service.insert(changeset)
    loaded = service.get("Movie", movie.id, preload="actors")
    changeset = service.cast(loaded, {"title": "Up 2", "actors": [{"id": loaded.actors[0].id}]}, ["title"])
    service.changesets.cast_association(changeset, "actors")

    with patch.object(JoinRepository, "unlink", side_effect=RuntimeError("disk full")), pytest.raises(RuntimeError):
        service.update(changeset)

    assert service.get("Movie", movie.id).title == "Up"
    assert names(service.assoc(movie, "actors")) == ["Ed", "Jordan"]
