"""
Error taxonomy for the repository layer.

Every failure that leaves the library is a ``RepositoryError`` carrying a short
machine-oriented ``kind``, a human-readable ``message`` and, where one exists,
a corrective ``hint``. Engine-specific exceptions (SQLAlchemy / DBAPI) are
translated at the repository boundary by ``error_boundary``.
"""

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import exc as orm_exc

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base class for all repository layer errors."""

    kind = "repository_error"

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        """Machine-oriented representation (kind, message, hint, operation)."""
        return {
            "kind": self.kind,
            "message": self.message,
            "hint": self.hint,
            "operation": self.operation,
        }

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message


class NotInitializedError(RepositoryError):
    """Raised when no session source is registered for a configuration name."""

    kind = "not_initialized"

    def __init__(self, config_name: str, operation: Optional[str] = None):
        super().__init__(
            f"Database configuration '{config_name}' has not been initialized",
            hint="Call repokit.start() or SessionManager.initialize() before using repositories.",
            operation=operation,
        )
        self.config_name = config_name


class ValidationError(RepositoryError):
    """Malformed or unknown field names, out-of-range paging, bad metadata."""

    kind = "validation"

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        operation: Optional[str] = None,
        field: Optional[str] = None,
        entity: Optional[str] = None,
    ):
        super().__init__(message, hint=hint, operation=operation)
        self.field = field
        self.entity = entity

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        data["entity"] = self.entity
        return data


class ConstraintViolationError(RepositoryError):
    """The store rejected a write because of a uniqueness or referential constraint."""

    kind = "constraint_violation"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        if field is not None and value is not None:
            hint = f"Use a different value for {field} or update the existing record instead."
        elif field is not None:
            hint = f"Check the value supplied for {field}."
        else:
            hint = "Check unique and foreign key constraints of the affected table."
        super().__init__(message, hint=hint, operation=operation)
        self.field = field
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        data["value"] = self.value
        return data


class ConnectionFailureError(RepositoryError):
    """The session could not be opened or the store could not be reached."""

    kind = "connection_failure"


class QueryTimeoutError(ConnectionFailureError):
    """Connection acquisition or statement execution exceeded its timeout."""

    kind = "timeout"


class EntityNotFoundError(RepositoryError):
    """A lazy reference was dereferenced after its session closed, or its row is gone."""

    kind = "not_found"


class TransactionFailureError(RepositoryError):
    """Generic fallback when a unit of work fails for another reason."""

    kind = "transaction_failure"


# SQLite:      UNIQUE constraint failed: task.code
# PostgreSQL:  Key (code)=(T-1) already exists.
# MySQL:       Duplicate entry 'T-1' for key 'task.code'
_SQLITE_CONSTRAINT = re.compile(r"(UNIQUE|NOT NULL|CHECK) constraint failed: (?:[\w\"]+\.)?([\w\"]+)")
_POSTGRES_KEY = re.compile(r"Key \((?P<field>[^)]+)\)=\((?P<value>[^)]*)\)")
_MYSQL_DUPLICATE = re.compile(r"Duplicate entry '(?P<value>[^']*)' for key '(?:[\w]+\.)?(?P<field>[\w]+)'")

_TIMEOUT_MARKERS = ("timeout", "timed out", "database is locked", "lock wait")
_MISSING_TABLE_MARKERS = ("no such table", "doesn't exist", "does not exist")


def _constraint_details(message: str) -> tuple[Optional[str], Optional[str]]:
    match = _POSTGRES_KEY.search(message)
    if match:
        return match.group("field"), match.group("value")
    match = _MYSQL_DUPLICATE.search(message)
    if match:
        return match.group("field"), match.group("value")
    match = _SQLITE_CONSTRAINT.search(message)
    if match:
        return match.group(2).strip('"'), None
    return None, None


def translate_exception(operation: str, error: BaseException) -> RepositoryError:
    """
    Convert an engine exception into the repository error taxonomy.

    Args:
        operation: Human-readable name of the failed operation
        error: The exception raised by SQLAlchemy or the DBAPI driver

    Returns:
        A RepositoryError subclass instance (never raised here)
    """
    if isinstance(error, RepositoryError):
        return error

    detail = str(getattr(error, "orig", None) or error)
    lowered = detail.lower()

    if isinstance(error, sa_exc.IntegrityError):
        field, value = _constraint_details(detail)
        if field and value is not None:
            message = f"A record with {field} = '{value}' already exists"
        elif field:
            message = f"Constraint violated on field '{field}' during {operation}"
        else:
            message = f"Constraint violated during {operation}: {detail}"
        return ConstraintViolationError(message, field=field, value=value, operation=operation)

    if isinstance(error, sa_exc.TimeoutError):
        return QueryTimeoutError(
            f"Timed out acquiring a connection during {operation}",
            hint="Increase pool_size/pool_timeout or reduce concurrent sessions.",
            operation=operation,
        )

    if isinstance(error, sa_exc.OperationalError):
        if any(marker in lowered for marker in _TIMEOUT_MARKERS):
            return QueryTimeoutError(
                f"Statement timed out during {operation}: {detail}",
                hint="Retry the operation or raise the engine's statement timeout.",
                operation=operation,
            )
        if any(marker in lowered for marker in _MISSING_TABLE_MARKERS):
            return TransactionFailureError(
                f"Table missing during {operation}: {detail}",
                hint="Make sure the schema is created (repokit.start(create_tables=True) or migrations).",
                operation=operation,
            )
        return ConnectionFailureError(
            f"Database connection failed during {operation}: {detail}",
            hint="Check your database configuration and ensure the database server is running.",
            operation=operation,
        )

    if isinstance(error, (sa_exc.InterfaceError, sa_exc.DisconnectionError)):
        return ConnectionFailureError(
            f"Database connection failed during {operation}: {detail}",
            hint="Check your database configuration and ensure the database server is running.",
            operation=operation,
        )

    if isinstance(error, (orm_exc.DetachedInstanceError, orm_exc.ObjectDeletedError, sa_exc.NoResultFound)):
        return EntityNotFoundError(
            f"Entity not available during {operation}: {detail}",
            hint="Load the entity inside an open session scope.",
            operation=operation,
        )

    return TransactionFailureError(
        f"Repository operation failed: {operation}: {detail}",
        hint="Check your entity configuration and database connection.",
        operation=operation,
    )


@contextmanager
def error_boundary(operation: str, entity: Optional[str] = None) -> Iterator[None]:
    """
    Translate engine failures raised inside the block.

    RepositoryError instances pass through untouched; SQLAlchemy errors are
    logged and re-raised as their taxonomy kind with the original as cause.

    Example:
        with error_boundary("save entity", entity="task"):
            session.add(task)
    """
    try:
        yield
    except RepositoryError:
        raise
    except sa_exc.SQLAlchemyError as e:
        translated = translate_exception(operation, e)
        logger.error(
            f"{operation} failed: {translated.message}",
            extra={"operation": operation, "entity": entity, "error_kind": translated.kind},
        )
        raise translated from e
