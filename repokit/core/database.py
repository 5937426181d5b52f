"""
Database configuration and session management.

Provides SQLAlchemy engine setup per named configuration and a session
manager that binds at most one session per (thread, configuration name),
with scoped acquisition and transaction helpers that always release what
they opened.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from repokit.core.config import Settings, get_settings
from repokit.core.exceptions import NotInitializedError, error_boundary

logger = logging.getLogger(__name__)

R = TypeVar("R")


def create_engine_from_settings(settings: Settings) -> Engine:
    """
    Create and configure the SQLAlchemy engine.

    For SQLite:
    - Uses StaticPool for in-memory databases (one shared connection)
    - Enables check_same_thread=False so sessions on other threads work
    - Turns on foreign key enforcement for every new connection
    - Sets WAL mode for file databases

    Other drivers get the configured pool size, overflow, timeout and recycle.

    Returns:
        Configured Engine instance
    """
    engine_kwargs: Dict[str, Any] = {
        "echo": settings.database_echo,
    }

    if settings.is_sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if settings.is_in_memory:
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update(
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
            pool_pre_ping=True,
        )

    engine = create_engine(settings.database_url, **engine_kwargs)

    if settings.is_sqlite:
        wal = not settings.is_in_memory

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if wal:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


class _ThreadState(threading.local):
    """Per-thread session bindings and transaction depth, keyed by config name."""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        self.depth: Dict[str, int] = {}


class SessionManager:
    """
    Owns the session factories of every named configuration and the
    sessions bound to each calling thread.

    Sessions are never shared between threads: bindings live in a
    thread-local map, so unrelated threads never contend on a lock.
    The factory registry is only locked while it is modified.

    Usage:
        manager = SessionManager()
        manager.initialize("default", Settings(database_url="sqlite:///app.db"))

        with manager.transaction() as session:
            session.add(task)

        manager.run_in_transaction(lambda session: session.get(Task, 1))
    """

    def __init__(self, default_config_name: Optional[str] = None):
        self.default_config_name = default_config_name or get_settings().default_config_name
        self._factories: Dict[str, sessionmaker] = {}
        self._engines: Dict[str, Engine] = {}
        self._settings: Dict[str, Settings] = {}
        self._registry_lock = threading.Lock()
        self._state = _ThreadState()

    # ------------------------------------------------------------------
    # Configuration registry
    # ------------------------------------------------------------------

    def initialize(
        self,
        config_name: Optional[str] = None,
        settings: Optional[Settings] = None,
        engine: Optional[Engine] = None,
    ) -> Engine:
        """
        Register a session source under a configuration name.

        Re-initializing an existing name disposes the previous engine.

        Args:
            config_name: Configuration name (defaults to default_config_name)
            settings: Settings used to build the engine (defaults to get_settings())
            engine: Pre-built engine to use instead of building one

        Returns:
            The engine now registered under the name
        """
        name = config_name or self.default_config_name
        settings = settings or get_settings()
        if engine is None:
            engine = create_engine_from_settings(settings)

        factory = sessionmaker(
            bind=engine,
            class_=Session,
            expire_on_commit=False,  # Entities stay readable after release
            autoflush=True,  # Read-your-writes inside one transaction
        )

        with self._registry_lock:
            previous = self._engines.get(name)
            self._engines[name] = engine
            self._factories[name] = factory
            self._settings[name] = settings

        if previous is not None and previous is not engine:
            previous.dispose()

        logger.info(
            f"Session source initialized for config: {name}",
            extra={"config_name": name, "dialect": engine.dialect.name},
        )
        return engine

    def is_initialized(self, config_name: Optional[str] = None) -> bool:
        return (config_name or self.default_config_name) in self._factories

    def get_engine(self, config_name: Optional[str] = None) -> Engine:
        name = config_name or self.default_config_name
        engine = self._engines.get(name)
        if engine is None:
            raise NotInitializedError(name)
        return engine

    def get_settings(self, config_name: Optional[str] = None) -> Settings:
        name = config_name or self.default_config_name
        settings = self._settings.get(name)
        if settings is None:
            raise NotInitializedError(name)
        return settings

    def shutdown(self) -> None:
        """
        Release the calling thread's sessions and dispose every engine.

        Sessions bound on other threads are closed by their owners; their
        connections are invalidated by the engine disposal.
        """
        for name in list(self._state.sessions):
            self.release(name)

        with self._registry_lock:
            engines = list(self._engines.items())
            self._engines.clear()
            self._factories.clear()
            self._settings.clear()

        for name, engine in engines:
            engine.dispose()
            logger.info(f"Session source shut down for config: {name}", extra={"config_name": name})

    # ------------------------------------------------------------------
    # Session binding
    # ------------------------------------------------------------------

    def acquire(self, config_name: Optional[str] = None) -> Session:
        """
        Return the calling thread's session for the configuration,
        opening and binding a new one if none is bound.

        Raises:
            NotInitializedError: If no session source is registered for the name
        """
        name = config_name or self.default_config_name
        session = self._state.sessions.get(name)
        if session is not None:
            return session

        factory = self._factories.get(name)
        if factory is None:
            raise NotInitializedError(name, operation="acquire session")

        session = factory()
        self._state.sessions[name] = session
        logger.debug(f"Session opened for config: {name}", extra={"config_name": name})
        return session

    def current_session(self, config_name: Optional[str] = None) -> Optional[Session]:
        """Return the session bound to the calling thread, if any."""
        return self._state.sessions.get(config_name or self.default_config_name)

    def is_current(self, session: Session, config_name: Optional[str] = None) -> bool:
        """Check whether ``session`` is still the calling thread's bound session."""
        return self.current_session(config_name) is session

    def release(self, config_name: Optional[str] = None) -> None:
        """
        Close and unbind the calling thread's session for the configuration.

        Closing ends any open transaction without expiring loaded entities,
        so objects read through the session stay readable once detached.
        Releasing when nothing is bound is a no-op, so a session is never
        closed twice.
        """
        name = config_name or self.default_config_name
        session = self._state.sessions.pop(name, None)
        self._state.depth.pop(name, None)
        if session is None:
            return

        session.close()
        logger.debug(f"Session closed for config: {name}", extra={"config_name": name})

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    @contextmanager
    def session_scope(self, config_name: Optional[str] = None) -> Iterator[Session]:
        """
        Scope for read operations.

        Reuses the thread's bound session when there is one; otherwise opens
        a session for the duration of the block and releases it afterwards.
        """
        name = config_name or self.default_config_name
        owned = name not in self._state.sessions
        session = self.acquire(name)
        try:
            yield session
        finally:
            if owned:
                self.release(name)

    @contextmanager
    def transaction(self, config_name: Optional[str] = None) -> Iterator[Session]:
        """
        Scope for a unit of work.

        The outermost scope begins the transaction, commits on normal exit
        and rolls back on any exception. Nested scopes on the same thread
        join the outer transaction. A session opened by the outermost scope
        is released on every exit path.
        """
        name = config_name or self.default_config_name
        depth = self._state.depth.get(name, 0)

        if depth:
            self._state.depth[name] = depth + 1
            try:
                yield self._state.sessions[name]
            finally:
                if name in self._state.depth:
                    self._state.depth[name] = depth
            return

        owned = name not in self._state.sessions
        session = self.acquire(name)
        self._state.depth[name] = 1
        try:
            if not session.in_transaction():
                session.begin()
            logger.debug("Transaction started", extra={"config_name": name})
            try:
                yield session
            except BaseException:
                self._rollback(session, name)
                raise
            try:
                session.commit()
            except BaseException:
                self._rollback(session, name)
                raise
            logger.debug("Transaction committed", extra={"config_name": name})
        finally:
            self._state.depth.pop(name, None)
            if owned:
                self.release(name)

    def run_in_transaction(
        self,
        body: Callable[[Session], R],
        config_name: Optional[str] = None,
    ) -> R:
        """
        Run ``body(session)`` inside a transaction and return its result.

        Commits on normal return, rolls back on any error, and releases the
        session it opened regardless of outcome. Engine failures surface as
        RepositoryError kinds; errors raised by ``body`` itself propagate as-is.
        """
        with error_boundary("run in transaction"):
            with self.transaction(config_name) as session:
                return body(session)

    def check_connection(self, config_name: Optional[str] = None) -> bool:
        """
        Check if the configuration's database is reachable.

        Returns:
            True if ``SELECT 1`` succeeds, False otherwise
        """
        try:
            with self.session_scope(config_name) as session:
                session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, NotInitializedError) as e:
            logger.warning(f"Connection check failed: {e}", extra={"config_name": config_name})
            return False

    @staticmethod
    def _rollback(session: Session, name: str) -> None:
        try:
            if session.in_transaction():
                session.rollback()
                logger.debug("Transaction rolled back", extra={"config_name": name})
        except SQLAlchemyError:
            logger.warning("Rollback failed", extra={"config_name": name}, exc_info=True)


# Shared manager used by repokit.start() and by repositories created without one
session_manager = SessionManager()


def init_db(
    config_name: Optional[str] = None,
    settings: Optional[Settings] = None,
    create_tables: bool = False,
    manager: Optional[SessionManager] = None,
) -> Engine:
    """
    Initialize a database configuration on the session manager.

    For production, manage the schema with migrations; ``create_tables``
    runs ``Base.metadata.create_all`` for local use and tests.

    Example:
        init_db("default", Settings(database_url="sqlite:///tasks.db"), create_tables=True)
    """
    manager = manager or session_manager
    engine = manager.initialize(config_name, settings, None)

    if create_tables:
        # Imported here so every model declared on Base is registered first
        from repokit.models import Base

        with error_boundary("create tables"):
            Base.metadata.create_all(engine)
        logger.info("Database tables created", extra={"config_name": config_name or manager.default_config_name})
    return engine


def close_db(manager: Optional[SessionManager] = None) -> None:
    """
    Close every database configuration of the session manager.

    Should be called at application shutdown to cleanly close
    all database connections.
    """
    (manager or session_manager).shutdown()
