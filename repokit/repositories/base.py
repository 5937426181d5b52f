"""
Generic repository for mapped entities.

Provides CRUD, field lookups, counting, sorting and pagination for any
entity type resolvable by the metadata resolver, without hand-written
queries.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterable, Iterator, List, Mapping, Optional, TypeVar, Union

from sqlalchemy import ColumnElement, delete, select
from sqlalchemy.orm import Session
from sqlalchemy.util import IdentitySet

from repokit.core.config import Settings, get_settings
from repokit.core.database import SessionManager, session_manager
from repokit.core.exceptions import EntityNotFoundError, ValidationError, error_boundary
from repokit.core.executor import execute_update, fetch_all
from repokit.core.logging_config import log_with_context
from repokit.core.metadata import EntityMetadata, MetadataResolver, metadata_resolver
from repokit.repositories.pagination import Paginator
from repokit.repositories.paging import Page, Pageable, Sort
from repokit.repositories.query_builder import Predicate, QueryBuilder

logger = logging.getLogger(__name__)

T = TypeVar("T")

SortOrPage = Union[Sort, Pageable, None]
QueryResult = Union[List[T], Page[T]]


class EntityReference(Generic[T]):
    """
    Lazy handle to an entity known only by its identity.

    Reading the identity attribute never touches the store. Reading any
    other attribute loads the row through the session the reference was
    created in, which must still be live.

    Raises (on attribute access):
        EntityNotFoundError: If the owning session has been released or the
            row does not exist
    """

    __slots__ = ("_entity_type", "_identity_field", "_identity", "_session", "_is_live")

    def __init__(
        self,
        entity_type: type,
        identity_field: str,
        identity: Any,
        session: Optional[Session],
        is_live: Callable[[Session], bool],
    ):
        object.__setattr__(self, "_entity_type", entity_type)
        object.__setattr__(self, "_identity_field", identity_field)
        object.__setattr__(self, "_identity", identity)
        object.__setattr__(self, "_session", session)
        object.__setattr__(self, "_is_live", is_live)

    @property
    def entity_type(self) -> type:
        return self._entity_type

    @property
    def identity(self) -> Any:
        return self._identity

    def resolve(self) -> T:
        """Load and return the referenced entity."""
        name = self._entity_type.__name__
        session = self._session
        if session is None or not self._is_live(session):
            raise EntityNotFoundError(
                f"Reference to {name} with id {self._identity!r} used after its session was released",
                hint="Dereference the entity inside the session scope that created it, or use find_by_id.",
                operation="get reference",
            )
        entity = session.get(self._entity_type, self._identity)
        if entity is None:
            raise EntityNotFoundError(
                f"{name} with id {self._identity!r} does not exist",
                operation="get reference",
            )
        return entity

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            # Private and protocol lookups (copy, pickle) never load the row
            raise AttributeError(name)
        if name == self._identity_field:
            return self._identity
        with error_boundary("get reference", self._entity_type.__name__):
            return getattr(self.resolve(), name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("EntityReference is read-only")

    def __repr__(self) -> str:
        return f"<EntityReference {self._entity_type.__name__}({self._identity_field}={self._identity!r})>"


class BaseRepository(Generic[T]):
    """
    Generic repository for one entity type.

    By default every operation runs in its own unit of work on the calling
    thread's session, joining an enclosing ``SessionManager.transaction()``
    when there is one. Passing ``session`` binds the repository to that
    session instead; writes are flushed but the caller owns the commit.

    Operations that come in plain, sorted and paged forms take an optional
    last argument: a ``Sort`` returns a list, a ``Pageable`` returns a Page.

    Attributes:
        model: Entity type, set on subclasses or passed to the constructor
        sessions: Session manager providing thread-bound sessions
        config_name: Named database configuration to use

    Usage:
        tasks = BaseRepository(Task)
        task = tasks.save(Task(title="Write docs", status="NEW"))
        open_tasks = tasks.find_by_field("status", "NEW", Sort.by("title"))
        page = tasks.find_all(PageRequest.of(0, 20, Sort.by("priority").descending()))

        class TaskRepository(BaseRepository[Task]):
            model = Task
    """

    model: Optional[type] = None

    def __init__(
        self,
        entity_type: Optional[type] = None,
        session: Optional[Session] = None,
        sessions: Optional[SessionManager] = None,
        config_name: Optional[str] = None,
        resolver: Optional[MetadataResolver] = None,
        settings: Optional[Settings] = None,
    ):
        entity_type = entity_type or self.model
        if entity_type is None:
            raise ValidationError(
                f"{type(self).__name__} has no entity type",
                hint="Pass entity_type or set the model class attribute.",
            )
        self.entity_type = entity_type
        self.session = session
        self.sessions = sessions or session_manager
        self.config_name = config_name or self.sessions.default_config_name
        self.resolver = resolver or metadata_resolver
        self._settings = settings
        self.builder = QueryBuilder(entity_type, self.resolver)

        # Fail fast on misconfigured entity types
        self.resolver.resolve(entity_type)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def metadata(self) -> EntityMetadata:
        return self.resolver.resolve(self.entity_type)

    @property
    def entity_name(self) -> str:
        return self.metadata.entity_name

    @property
    def settings(self) -> Settings:
        if self._settings is not None:
            return self._settings
        if self.sessions.is_initialized(self.config_name):
            return self.sessions.get_settings(self.config_name)
        return get_settings()

    @property
    def paginator(self) -> Paginator[T]:
        return Paginator(self.builder, self.settings.max_page_size)

    @contextmanager
    def _read(self) -> Iterator[Session]:
        if self.session is not None:
            yield self.session
        else:
            with self.sessions.session_scope(self.config_name) as session:
                yield session

    @contextmanager
    def _write(self) -> Iterator[Session]:
        if self.session is not None:
            yield self.session
            self.session.flush()
        else:
            with self.sessions.transaction(self.config_name) as session:
                yield session

    def _boundary(self, operation: str):
        return error_boundary(operation, self.entity_name)

    def _identity_column(self):
        return self.builder.identity_column()

    @staticmethod
    def _require_id(id: Any, operation: str) -> None:
        if id is None:
            raise ValidationError("Identity must not be None", operation=operation)

    def _where(self, predicates: List[Predicate], operation: str) -> Optional[ColumnElement[bool]]:
        if not predicates:
            return None
        return self.builder.build_filter(predicates, operation).clause

    def _query(
        self,
        where: Optional[ColumnElement[bool]],
        order: SortOrPage,
        operation: str,
    ) -> QueryResult:
        paginator = self.paginator
        if isinstance(order, Pageable):
            paginator.check_pageable(order, operation)
        elif order is not None and not isinstance(order, Sort):
            raise ValidationError(
                f"Expected Sort or Pageable, got {type(order).__name__}",
                operation=operation,
            )

        with self._boundary(operation):
            with self._read() as session:
                if isinstance(order, Pageable):
                    return paginator.paginate(session, order, where, operation)
                return paginator.fetch(session, where, order)

    def _count(self, where: Optional[ColumnElement[bool]], operation: str) -> int:
        with self._boundary(operation):
            with self._read() as session:
                return self.paginator.count(session, where)

    def _bulk_delete(self, where: Optional[ColumnElement[bool]], operation: str) -> int:
        stmt = delete(self.entity_type)
        if where is not None:
            stmt = stmt.where(where)
        with self._boundary(operation):
            with self._write() as session:
                affected = execute_update(session, stmt, self.entity_name)
        log_with_context(
            logger,
            "info",
            f"Deleted {affected} {self.entity_name} row(s)",
            operation=operation,
            entity=self.entity_name,
            config_name=self.config_name,
            rows=affected,
        )
        return affected

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _save_one(self, session: Session, entity: T, flush: bool) -> T:
        if not isinstance(entity, self.entity_type):
            raise ValidationError(
                f"Expected {self.entity_name}, got {type(entity).__name__}",
                operation="save",
                entity=self.entity_name,
            )
        if self.resolver.is_new(entity):
            identity_field = self.metadata.require_identity()
            if getattr(entity, identity_field, None) is not None:
                # Zero means "not yet assigned"; let the store generate it
                setattr(entity, identity_field, None)
            session.add(entity)
            if flush:
                session.flush()
            return entity
        return session.merge(entity)

    def save(self, entity: T) -> T:
        """
        Insert the entity if it is new, otherwise update it by merge.

        Returns:
            The persisted instance, with its identity populated on insert
        """
        with self._boundary("save"):
            with self._write() as session:
                saved = self._save_one(session, entity, flush=True)
        logger.debug("Entity saved", extra={"operation": "save", "entity": self.entity_name})
        return saved

    def save_all(self, entities: Iterable[T]) -> List[T]:
        """
        Save every entity in a single transaction.

        Pending state is flushed every ``batch_size`` entities and the
        instances that batch brought into the session are expunged. Objects
        the session already held, such as those of an enclosing
        transaction, stay attached. A failure anywhere rolls back the whole
        batch.

        Returns:
            The persisted instances, in input order
        """
        batch_size = self.settings.batch_size
        saved: List[T] = []
        with self._boundary("save all"):
            with self._write() as session:
                held = IdentitySet(session)
                chunk: List[T] = []
                for entity in entities:
                    instance = self._save_one(session, entity, flush=False)
                    saved.append(instance)
                    chunk.append(instance)
                    if len(chunk) == batch_size:
                        session.flush()
                        self._expunge_batch(session, chunk, held)
                        chunk = []
                session.flush()
        log_with_context(
            logger,
            "info",
            f"Saved {len(saved)} {self.entity_name} entities",
            operation="save all",
            entity=self.entity_name,
            config_name=self.config_name,
            rows=len(saved),
        )
        return saved

    @staticmethod
    def _expunge_batch(session: Session, chunk: List[T], held: IdentitySet) -> None:
        for instance in chunk:
            if instance not in held and instance in session:
                session.expunge(instance)

    def flush(self) -> None:
        """Apply pending changes of the active session now; no-op without one."""
        session = self.session or self.sessions.current_session(self.config_name)
        if session is None:
            return
        with self._boundary("flush"):
            session.flush()

    def save_and_flush(self, entity: T) -> T:
        with self._boundary("save and flush"):
            with self._write() as session:
                saved = self._save_one(session, entity, flush=True)
                session.flush()
        return saved

    def save_all_and_flush(self, entities: Iterable[T]) -> List[T]:
        with self._boundary("save all and flush"):
            with self._write() as session:
                saved = self.save_all(entities)
                session.flush()
        return saved

    # ------------------------------------------------------------------
    # Lookups by identity
    # ------------------------------------------------------------------

    def find_by_id(self, id: Any) -> Optional[T]:
        """Return the entity with the given identity, or None."""
        self._require_id(id, "find by id")
        with self._boundary("find by id"):
            with self._read() as session:
                return session.get(self.entity_type, id)

    def exists_by_id(self, id: Any) -> bool:
        self._require_id(id, "exists by id")
        return self._count(self._identity_column() == id, "exists by id") > 0

    def find_all_by_id(self, ids: Iterable[Any]) -> List[T]:
        """Return the entities whose identity is in ``ids``; missing ones are skipped."""
        values = [value for value in ids if value is not None]
        if not values:
            return []
        return self._query(self._identity_column().in_(values), None, "find all by id")

    def get_reference_by_id(self, id: Any) -> EntityReference[T]:
        """
        Return a lazy reference bound to the active session.

        Useful when only the identity is needed (e.g. to set a foreign
        key). Other attributes can be read only while that session is still
        bound; afterwards they raise EntityNotFoundError.
        """
        self._require_id(id, "get reference")
        if self.session is not None:
            session = self.session
            is_live = lambda _: True  # noqa: E731
        else:
            session = self.sessions.current_session(self.config_name)
            is_live = lambda s: self.sessions.is_current(s, self.config_name)  # noqa: E731
        return EntityReference(self.entity_type, self.metadata.require_identity(), id, session, is_live)

    get_one = get_reference_by_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_all(self, order: SortOrPage = None) -> QueryResult:
        """
        Return all entities.

        Args:
            order: None for an unordered list, a Sort for a sorted list, or a
                Pageable for one Page
        """
        return self._query(None, order, "find all")

    def find_where(self, *predicates: Predicate, order: SortOrPage = None) -> QueryResult:
        """Return entities matching every predicate (AND)."""
        return self._query(self._where(list(predicates), "find where"), order, "find where")

    def count_where(self, *predicates: Predicate) -> int:
        return self._count(self._where(list(predicates), "count where"), "count where")

    def find_by_field(self, field: str, value: Any, order: SortOrPage = None) -> QueryResult:
        """
        Return entities whose ``field`` equals ``value``.

        A None value matches rows where the field IS NULL.

        Raises:
            ValidationError: If ``field`` is not a field of the entity
        """
        return self.find_where(Predicate.eq(field, value), order=order)

    def find_by_field_is_null(self, field: str, order: SortOrPage = None) -> QueryResult:
        return self.find_where(Predicate.is_null(field), order=order)

    def find_by_field_is_not_null(self, field: str, order: SortOrPage = None) -> QueryResult:
        return self.find_where(Predicate.is_not_null(field), order=order)

    def find_by_field_in(self, field: str, values: Iterable[Any], order: SortOrPage = None) -> QueryResult:
        """Membership lookup; an empty ``values`` matches nothing."""
        return self.find_where(Predicate.in_(field, values), order=order)

    def find_by_field_between(
        self,
        field: str,
        lower: Any,
        upper: Any,
        order: SortOrPage = None,
    ) -> QueryResult:
        """Inclusive range lookup."""
        return self.find_where(Predicate.between(field, lower, upper), order=order)

    def find_by_field_containing(self, field: str, fragment: str, order: SortOrPage = None) -> QueryResult:
        return self.find_where(Predicate.containing(field, fragment), order=order)

    def find_by_field_starting_with(self, field: str, prefix: str, order: SortOrPage = None) -> QueryResult:
        return self.find_where(Predicate.starts_with(field, prefix), order=order)

    def find_by_field_ending_with(self, field: str, suffix: str, order: SortOrPage = None) -> QueryResult:
        return self.find_where(Predicate.ends_with(field, suffix), order=order)

    def find_first_by_field(self, field: str, value: Any, sort: Optional[Sort] = None) -> Optional[T]:
        """
        Return the first entity whose ``field`` equals ``value``, or None.

        "First" follows ``sort`` when given, then the identity ascending.
        """
        where = self._where([Predicate.eq(field, value)], "find first by field")
        stmt = (
            select(self.entity_type)
            .where(where)
            .order_by(*self.builder.build_order_by(sort, tiebreak=True))
            .limit(1)
        )
        with self._boundary("find first by field"):
            with self._read() as session:
                results = fetch_all(session, stmt, self.entity_name)
        return results[0] if results else None

    def exists_by_field(self, field: str, value: Any) -> bool:
        return self.count_by_field(field, value) > 0

    def find_by_fields(self, criteria: Mapping[str, Any], order: SortOrPage = None) -> QueryResult:
        """
        Return entities matching every ``field = value`` pair of ``criteria``.

        Empty ``criteria`` match every entity, as ``find_all(order)`` does.

        Raises:
            ValidationError: If ``criteria`` names an unknown field
        """
        if not criteria:
            return self._query(None, order, "find by fields")
        where = self.builder.build_equality_filter(criteria, "find by fields").clause
        return self._query(where, order, "find by fields")

    # ------------------------------------------------------------------
    # Counting
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self._count(None, "count")

    def count_by_field(self, field: str, value: Any) -> int:
        return self.count_where(Predicate.eq(field, value))

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_by_id(self, id: Any) -> int:
        """Delete the row with the given identity; returns the affected row count."""
        self._require_id(id, "delete by id")
        return self._bulk_delete(self._identity_column() == id, "delete by id")

    def delete(self, entity: T) -> None:
        """
        Delete one entity instance.

        A detached instance is merged into the active session first. A new
        (never saved) entity has no row and is ignored.
        """
        if self.resolver.is_new(entity):
            logger.debug(
                "Ignoring delete of unsaved entity",
                extra={"operation": "delete", "entity": self.entity_name},
            )
            return
        with self._boundary("delete"):
            with self._write() as session:
                attached = self._attach(session, entity)
                if attached is not None:
                    session.delete(attached)

    def _attach(self, session: Session, entity: T) -> Optional[T]:
        """Return ``entity`` attached to ``session``, or None if its row is gone."""
        if entity in session:
            return entity
        if session.get(self.entity_type, self.resolver.get_identity(entity)) is None:
            return None
        return session.merge(entity)

    def delete_all_by_id(self, ids: Iterable[Any]) -> int:
        values = [value for value in ids if value is not None]
        if not values:
            return 0
        return self._bulk_delete(self._identity_column().in_(values), "delete all by id")

    def delete_all(self, entities: Optional[Iterable[T]] = None) -> int:
        """
        Delete the given entities one by one in a single transaction, or
        every row of the table with one bulk statement when called without
        arguments.

        Returns:
            Number of entities (or rows) deleted
        """
        if entities is None:
            return self._bulk_delete(None, "delete all")

        deleted = 0
        with self._boundary("delete all"):
            with self._write() as session:
                for entity in entities:
                    if self.resolver.is_new(entity):
                        continue
                    attached = self._attach(session, entity)
                    if attached is not None:
                        session.delete(attached)
                        deleted += 1
        return deleted

    def delete_by_field(self, field: str, value: Any) -> int:
        """Bulk delete rows whose ``field`` equals ``value``."""
        return self._bulk_delete(self._where([Predicate.eq(field, value)], "delete by field"), "delete by field")

    def delete_in_batch(self, entities: Iterable[T]) -> int:
        """Delete the given entities with one bulk statement on their identities."""
        ids = [self.resolver.get_identity(entity) for entity in entities if not self.resolver.is_new(entity)]
        if not ids:
            return 0
        return self._bulk_delete(self._identity_column().in_(ids), "delete in batch")

    def delete_all_in_batch(self) -> int:
        return self._bulk_delete(None, "delete all in batch")

    def delete_all_by_id_in_batch(self, ids: Iterable[Any]) -> int:
        return self.delete_all_by_id(ids)
