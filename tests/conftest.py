"""
Pytest configuration and shared fixtures.

This module provides:
- Environment variable setup for tests
- An isolated in-memory session manager per test
- A statement counter for asserting issued SQL
- Repositories over the sample entities
"""

import os
from typing import List

import pytest

# Set test environment variables BEFORE any imports
# This must happen first to ensure settings load with test values
os.environ["REPOKIT_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REPOKIT_BATCH_SIZE"] = "20"

from sqlalchemy import event  # noqa: E402

from repokit.core.config import Settings, get_settings  # noqa: E402
from repokit.core.database import SessionManager  # noqa: E402
from repokit.models import Base  # noqa: E402
from repokit.repositories import BaseRepository  # noqa: E402

from entities import Note, Task  # noqa: E402

get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory database."""
    return Settings(database_url="sqlite:///:memory:", batch_size=20, max_page_size=100)


@pytest.fixture(scope="function")
def sessions(settings: Settings):
    """
    Provide a session manager bound to a fresh in-memory database.

    Creates tables before test and disposes the engine after.
    """
    manager = SessionManager(default_config_name="default")
    engine = manager.initialize("default", settings)
    Base.metadata.create_all(engine)

    yield manager

    manager.shutdown()


@pytest.fixture
def statements(sessions: SessionManager) -> List[str]:
    """Capture every SQL statement sent to the test database."""
    captured: List[str] = []
    engine = sessions.get_engine()

    def _record(conn, cursor, statement, parameters, context, executemany):  # noqa: ANN001
        captured.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    yield captured
    event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture
def tasks(sessions: SessionManager) -> BaseRepository[Task]:
    return BaseRepository(Task, sessions=sessions)


@pytest.fixture
def notes(sessions: SessionManager) -> BaseRepository[Note]:
    return BaseRepository(Note, sessions=sessions)
