"""
Repository registry.

Caches one BaseRepository per (entity type, configuration name) so callers
can ask for a repository anywhere without wiring one through.
"""

import threading
from typing import Dict, Optional, Tuple

from repokit.core.database import SessionManager, session_manager
from repokit.repositories.base import BaseRepository

_repositories: Dict[Tuple[SessionManager, type, str], BaseRepository] = {}
_lock = threading.Lock()


def repository_for(
    entity_type: type,
    config_name: Optional[str] = None,
    sessions: Optional[SessionManager] = None,
) -> BaseRepository:
    """
    Get the shared repository for an entity type.

    Args:
        entity_type: Mapped entity class
        config_name: Named database configuration (defaults to the manager's default)
        sessions: Session manager (defaults to the shared one)

    Returns:
        The cached BaseRepository for the pair, created on first request

    Example:
        >>> tasks = repository_for(Task)
        >>> tasks is repository_for(Task)
        True
    """
    sessions = sessions or session_manager
    name = config_name or sessions.default_config_name
    key = (sessions, entity_type, name)

    repository = _repositories.get(key)
    if repository is not None:
        return repository

    with _lock:
        repository = _repositories.get(key)
        if repository is None:
            repository = BaseRepository(entity_type, sessions=sessions, config_name=name)
            _repositories[key] = repository
    return repository


def clear_repositories() -> None:
    """Forget every cached repository."""
    with _lock:
        _repositories.clear()
