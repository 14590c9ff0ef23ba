"""
This orm module contains the persistence side of RelationKit: records, tables built from
registered schemas, repositories, the Unit of Work, the association writer and the
preload executor. Any SQLAlchemy 2.x engine works as the data store.
"""
