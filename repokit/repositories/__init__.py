"""
Repository layer for data access.

Provides a generic repository with dynamic filtering, sorting and
pagination, isolating database access from business logic.
"""

from repokit.repositories.base import BaseRepository, EntityReference
from repokit.repositories.pagination import Paginator
from repokit.repositories.paging import (
    Direction,
    NullHandling,
    Order,
    Page,
    Pageable,
    PageRequest,
    Sort,
    Unpaged,
)
from repokit.repositories.query_builder import Operator, Predicate, QueryBuilder, QueryFragment, escape_like
from repokit.repositories.registry import clear_repositories, repository_for

__all__ = [
    "BaseRepository",
    "Direction",
    "EntityReference",
    "NullHandling",
    "Operator",
    "Order",
    "Page",
    "PageRequest",
    "Pageable",
    "Paginator",
    "Predicate",
    "QueryBuilder",
    "QueryFragment",
    "Sort",
    "Unpaged",
    "clear_repositories",
    "escape_like",
    "repository_for",
]
