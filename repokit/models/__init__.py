"""
Declarative base and mixins for repository-managed entities.
"""

from repokit.models.base import Base, ModelMixin, TimestampMixin, utc_now

__all__ = [
    "Base",
    "ModelMixin",
    "TimestampMixin",
    "utc_now",
]
