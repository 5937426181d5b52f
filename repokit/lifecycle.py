"""
Library entry points.

Starts and stops the shared session manager and hands out cached
repositories.
"""

import logging
from typing import Optional

from repokit.core.config import get_settings
from repokit.core.database import close_db, init_db, session_manager
from repokit.core.logging_config import setup_logging
from repokit.repositories.base import BaseRepository
from repokit.repositories.registry import clear_repositories, repository_for

logger = logging.getLogger(__name__)


def start(
    database_url: Optional[str] = None,
    config_name: Optional[str] = None,
    create_tables: bool = False,
    configure_logging: bool = True,
) -> None:
    """
    Initialize a database configuration on the shared session manager.

    Args:
        database_url: Overrides REPOKIT_DATABASE_URL for this configuration
        config_name: Configuration name (defaults to REPOKIT_DEFAULT_CONFIG_NAME)
        create_tables: Create tables for every model declared on Base
        configure_logging: Install the JSON log handler using REPOKIT_LOG_LEVEL

    Example:
        repokit.start("sqlite:///tasks.db", create_tables=True)
        tasks = repokit.repository(Task)
    """
    settings = get_settings()
    if database_url is not None:
        settings = settings.model_copy(update={"database_url": database_url})

    if configure_logging:
        setup_logging(level=settings.log_level, json_format=settings.log_json)

    name = config_name or settings.default_config_name
    init_db(name, settings, create_tables)
    logger.info(f"Repository layer started for config: {name}", extra={"config_name": name})


def stop() -> None:
    """Close every configuration and forget cached repositories."""
    close_db()
    clear_repositories()
    logger.info("Repository layer stopped")


def is_running(config_name: Optional[str] = None) -> bool:
    return session_manager.is_initialized(config_name)


def repository(entity_type: type, config_name: Optional[str] = None) -> BaseRepository:
    """Get the shared repository for ``entity_type``."""
    return repository_for(entity_type, config_name)
