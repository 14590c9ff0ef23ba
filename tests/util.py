import textwrap
from pathlib import Path
from typing import Any

from relationkit.orm.record import Record
from relationkit.schema import belongs_to, define_schema, field, has_many, has_one, many_to_many
from relationkit.schema.registry import SchemaRegistry
from relationkit.service import RepoService

SCHEMAS_YAML = textwrap.dedent(
    """
    schemas:
      - name: Movie
        timestamps: true
        unique:
          - [title]
        fields:
          title: string
          release_year: integer
        associations:
          - {kind: has_many, name: characters, related: Character, on_replace: delete_missing}
          - {kind: many_to_many, name: actors, related: Actor, join_through: movies_actors}
      - name: Character
        fields:
          name: string
        associations:
          - {kind: belongs_to, name: movie, related: Movie}
      - name: Actor
        source: people
        fields:
          name: string
        associations:
          - kind: many_to_many
            name: movies
            related: Movie
            join_through: movies_actors
            join_keys: [actor_id, movie_id]
    """
)


def write_schemas(path: Path) -> Path:
    """Write the movie schema definition file to ``path``."""
    path.write_text(SCHEMAS_YAML)
    return path


def build_movie_registry(
    characters_on_replace: str | None = None,
    characters_on_delete: str = "nothing",
    distributor_on_replace: str | None = "delete_missing",
    actors_on_replace: str | None = "delete_missing",
) -> SchemaRegistry:
    """Movie has many Characters, has one Distributor and many Actors through ``movies_actors``."""
    return SchemaRegistry([
        define_schema(
            "Movie",
            fields=[field("title"), field("tagline"), field("release_year", "integer")],
            associations=[
                has_many("characters", "Character", on_replace=characters_on_replace, on_delete=characters_on_delete),
                has_one("distributor", "Distributor", on_replace=distributor_on_replace),
                many_to_many("actors", "Actor", join_through="movies_actors", on_replace=actors_on_replace),
            ],
            timestamps=True,
            unique=[("title",)],
        ),
        define_schema(
            "Character",
            fields=[field("name"), field("age", "integer")],
            associations=[belongs_to("movie", "Movie")],
        ),
        define_schema(
            "Distributor",
            fields=[field("name")],
            associations=[belongs_to("movie", "Movie")],
        ),
        define_schema(
            "Actor",
            fields=[field("name")],
            associations=[many_to_many("movies", "Movie", join_through="movies_actors")],
        ),
    ])


def insert_movie(service: RepoService, title: str, characters: list[dict] | None = None, **attrs: Any) -> Record:
    """Insert a movie (and nested characters) through a cast changeset."""
    params = {"title": title, **attrs}
    if characters is not None:
        params["characters"] = characters
    changeset = service.cast("Movie", params, ["title", "tagline", "release_year"])
    if characters is not None:
        service.changesets.cast_association(changeset, "characters")
    return service.insert(changeset)


def names(records: list[Record]) -> list[str]:
    return [record.name for record in records]
