"""
Tests for the library entry points (start, repository, stop).
"""

import pytest

import repokit
from repokit.core.database import session_manager
from repokit.core.exceptions import NotInitializedError

from entities import Task


@pytest.fixture
def running():
    repokit.start("sqlite:///:memory:", create_tables=True, configure_logging=False)
    yield
    repokit.stop()


class TestLifecycle:
    """Tests for start/stop and the shared repository registry."""

    def test_start_initializes_default_config(self, running):
        assert repokit.is_running()
        assert session_manager.check_connection()

    def test_repository_round_trip(self, running):
        """
        Arrange: Library started with tables created
        Act: Save through the shared repository
        Assert: Same repository returned each time; row visible
        """
        tasks = repokit.repository(Task)

        saved = tasks.save(Task(title="Via entry point"))

        assert repokit.repository(Task) is tasks
        assert tasks.find_by_id(saved.id).title == "Via entry point"

    def test_stop_shuts_everything_down(self):
        repokit.start("sqlite:///:memory:", create_tables=True, configure_logging=False)
        tasks = repokit.repository(Task)

        repokit.stop()

        assert not repokit.is_running()
        assert repokit.repository(Task) is not tasks
        with pytest.raises(NotInitializedError):
            repokit.repository(Task).count()

    def test_named_configuration(self):
        repokit.start("sqlite:///:memory:", config_name="archive", create_tables=True, configure_logging=False)
        try:
            assert repokit.is_running("archive")
            assert not repokit.is_running("default")
            assert repokit.repository(Task, "archive").count() == 0
        finally:
            repokit.stop()
