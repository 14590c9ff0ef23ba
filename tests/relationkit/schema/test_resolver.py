import pytest

from relationkit.exceptions import (
    InvalidAssociationError,
    InvalidJoinSchemaError,
    UnknownAssociationError,
    UnknownSchemaError,
)
from relationkit.schema import (
    AssociationResolver,
    ForeignKeyWiring,
    JoinWiring,
    belongs_to,
    define_schema,
    field,
    has_many,
    many_to_many,
)
from relationkit.schema.registry import SchemaRegistry
from relationkit.schema.resolver import wiring_summary


@pytest.fixture
def resolver(movie_registry) -> AssociationResolver:
    return AssociationResolver(movie_registry)


def join_schema_registry(join_associations: list, unique: list | None = None) -> SchemaRegistry:
    return SchemaRegistry([
        define_schema("Movie", fields=[field("title")], associations=[
            many_to_many("actors", "Actor", join_schema="MovieActor"),
        ]),
        define_schema("Actor", fields=[field("name")]),
        define_schema(
            "MovieActor", fields=[field("role")], associations=join_associations, timestamps=True, unique=unique
        ),
    ])


def test_has_many_wiring(resolver):
    wiring = resolver.wiring_for("Movie", "characters")

    assert isinstance(wiring, ForeignKeyWiring)
    assert wiring.owner.name == "Movie"
    assert wiring.related.name == "Character"
    assert wiring.owner_key == "id"
    assert wiring.related_key == "movie_id"
    assert wiring.owner_holds_key is False
    assert wiring.foreign_key == "movie_id"


def test_belongs_to_wiring(resolver, movie_registry):
    wiring = resolver.wiring_for(movie_registry.lookup("Character"), "movie")

    assert isinstance(wiring, ForeignKeyWiring)
    assert wiring.owner_key == "movie_id"
    assert wiring.related_key == "id"
    assert wiring.owner_holds_key is True


def test_has_one_wiring(resolver):
    wiring = resolver.wiring_for("Movie", "distributor")

    assert wiring.related.name == "Distributor"
    assert wiring.related_key == "movie_id"


def test_many_to_many_synthesizes_join_table(resolver):
    wiring = resolver.wiring_for("Movie", "actors")

    assert isinstance(wiring, JoinWiring)
    assert wiring.synthesized
    assert wiring.unique
    assert wiring.join_source == "movies_actors"
    assert wiring.join_owner_key == "movie_id"
    assert wiring.join_related_key == "actor_id"

    inverse = resolver.wiring_for("Actor", "movies")
    assert inverse.join_source == "movies_actors"
    assert inverse.join_owner_key == "actor_id"
    assert inverse.join_related_key == "movie_id"


def test_join_wirings_are_distinct_per_table(resolver):
    join_wirings = resolver.join_wirings()

    assert [w.join_source for w in join_wirings] == ["movies_actors"]


def test_wiring_is_cached(resolver):
    assert resolver.wiring_for("Movie", "characters") is resolver.wiring_for("Movie", "characters")


def test_unknown_association(resolver):
    with pytest.raises(UnknownAssociationError):
        resolver.wiring_for("Movie", "directors")


def test_unknown_owner_schema(resolver):
    with pytest.raises(UnknownSchemaError):
        resolver.wiring_for("Ghost", "characters")


def test_unknown_related_schema():
    registry = SchemaRegistry([define_schema("Movie", associations=[has_many("ghosts", "Ghost")])])

    with pytest.raises(UnknownSchemaError):
        AssociationResolver(registry).wiring_for("Movie", "ghosts")


def test_missing_foreign_key_field():
    registry = SchemaRegistry([
        define_schema("Movie", associations=[has_many("characters", "Character")]),
        define_schema("Character", fields=[field("name")]),
    ])

    with pytest.raises(InvalidAssociationError, match="movie_id"):
        AssociationResolver(registry).wiring_for("Movie", "characters")


def test_join_schema_wiring():
    registry = join_schema_registry(
        [belongs_to("movie", "Movie"), belongs_to("actor", "Actor")],
        unique=[("movie_id", "actor_id")],
    )
    wiring = AssociationResolver(registry).wiring_for("Movie", "actors")

    assert isinstance(wiring, JoinWiring)
    assert not wiring.synthesized
    assert wiring.join_schema.name == "MovieActor"
    assert wiring.join_source == "movie_actors"
    assert wiring.join_owner_key == "movie_id"
    assert wiring.join_related_key == "actor_id"
    assert wiring.unique


def test_join_schema_missing_belongs_to():
    registry = join_schema_registry([belongs_to("movie", "Movie")])

    with pytest.raises(InvalidJoinSchemaError) as exc_info:
        AssociationResolver(registry).wiring_for("Movie", "actors")

    assert exc_info.value.missing == ["Actor"]
    assert exc_info.value.join_schema == "MovieActor"


def test_inverse_through_different_join_relation():
    registry = SchemaRegistry([
        define_schema("Movie", associations=[many_to_many("actors", "Actor", join_through="movies_actors")]),
        define_schema("Actor", associations=[many_to_many("movies", "Movie", join_through="actors_movies")]),
    ])

    with pytest.raises(InvalidAssociationError, match="different join relation"):
        AssociationResolver(registry).wiring_for("Movie", "actors")


def test_self_referencing_many_to_many_needs_join_keys():
    registry = SchemaRegistry([
        define_schema("Person", associations=[many_to_many("friends", "Person", join_through="friendships")]),
    ])

    with pytest.raises(InvalidAssociationError, match="join_keys"):
        AssociationResolver(registry).wiring_for("Person", "friends")


def test_self_referencing_many_to_many_with_join_keys():
    registry = SchemaRegistry([
        define_schema(
            "Person",
            associations=[
                many_to_many("friends", "Person", join_through="friendships", join_keys=("person_id", "friend_id"))
            ],
        ),
    ])
    wiring = AssociationResolver(registry).wiring_for("Person", "friends")

    assert (wiring.join_owner_key, wiring.join_related_key) == ("person_id", "friend_id")


def test_wiring_summary(resolver):
    assert wiring_summary(resolver.wiring_for("Movie", "characters")) == "movies.id <- characters.movie_id"
    assert wiring_summary(resolver.wiring_for("Character", "movie")) == "characters.movie_id -> movies.id"
    assert "movies_actors.movie_id" in wiring_summary(resolver.wiring_for("Movie", "actors"))


def test_resolve_every_association(resolver, movie_registry):
    wirings = resolver.wirings()

    assert len(wirings) == sum(len(schema.associations) for schema in movie_registry)
