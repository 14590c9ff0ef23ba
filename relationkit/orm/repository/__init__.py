"""Repository module for RelationKit ORM.

This module provides repository classes for data access layer operations.
"""

from relationkit.orm.repository.base import GenericRepository
from relationkit.orm.repository.join import JoinRepository

__all__ = [
    "GenericRepository",
    "JoinRepository",
]
