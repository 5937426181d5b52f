"""
Base models and mixins for SQLAlchemy ORM.

Provides the declarative base for repository-managed entities, a timestamp
mixin, and common utilities for all mapped models.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for all repository-managed entities.

    The storage name defaults to the lower-cased class name; declare
    ``__tablename__`` explicitly to override it.

    Declare generated identities as ``Mapped[int]``, not ``Mapped[Optional[int]]``.
    A nullable primary key cannot act as the sentinel for SQLAlchemy's
    multi-row INSERT, so saving several new entities in one flush fails.
    The attribute is still None on a new instance until it is inserted.

    Example:
        class Task(Base):
            id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
            title: Mapped[str] = mapped_column(String(200))
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()


def utc_now() -> datetime:
    """
    Get current UTC timestamp (timezone-aware).

    Used as the Python-side default of the timestamp columns.
    """
    return datetime.now(timezone.utc)


class TimestampMixin:
    """
    Mixin that adds created_at and updated_at timestamp columns.

    Attributes:
        created_at: Timestamp when record was created (immutable)
        updated_at: Timestamp when record was last updated (auto-updated)
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        doc="UTC timestamp when record was created"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        doc="UTC timestamp when record was last updated"
    )


class ModelMixin:
    """
    Mixin providing common model utilities.

    Adds helper methods for serialization and representation.
    """

    def to_dict(self) -> dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            Dictionary keyed by mapped attribute name

        Note:
            Only includes columns, not relationships.
        """
        return {
            attr.key: getattr(self, attr.key)
            for attr in self.__mapper__.column_attrs
        }

    def __repr__(self) -> str:
        """
        String representation of model instance.

        Returns:
            String like "Task(id=1, title='Write docs')"
        """
        attrs = ", ".join(
            f"{key}={repr(value)}"
            for key, value in self.to_dict().items()
            if key in ["id", "name", "title", "code"]  # Key identifying fields
        )
        return f"{self.__class__.__name__}({attrs})"
