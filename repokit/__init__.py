"""
repokit - generic repository and dynamic query engine for SQLAlchemy models.
"""

from repokit.core.config import Settings, get_settings
from repokit.core.database import SessionManager, session_manager
from repokit.core.exceptions import (
    ConnectionFailureError,
    ConstraintViolationError,
    EntityNotFoundError,
    NotInitializedError,
    QueryTimeoutError,
    RepositoryError,
    TransactionFailureError,
    ValidationError,
)
from repokit.core.metadata import EntityMetadata, MetadataResolver, register_entity
from repokit.lifecycle import is_running, repository, start, stop
from repokit.repositories import (
    BaseRepository,
    Direction,
    NullHandling,
    Order,
    Page,
    Pageable,
    PageRequest,
    Predicate,
    Sort,
    repository_for,
)

__version__ = "0.1.0"

__all__ = [
    "BaseRepository",
    "ConnectionFailureError",
    "ConstraintViolationError",
    "Direction",
    "EntityMetadata",
    "EntityNotFoundError",
    "MetadataResolver",
    "NotInitializedError",
    "NullHandling",
    "Order",
    "Page",
    "PageRequest",
    "Pageable",
    "Predicate",
    "QueryTimeoutError",
    "RepositoryError",
    "SessionManager",
    "Settings",
    "Sort",
    "TransactionFailureError",
    "ValidationError",
    "get_settings",
    "is_running",
    "register_entity",
    "repository",
    "repository_for",
    "session_manager",
    "start",
    "stop",
]
