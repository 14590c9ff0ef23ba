"""RelationKit: schema associations, changesets and preloading on top of SQLAlchemy."""
