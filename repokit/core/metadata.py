"""
Entity metadata resolution.

Discovers the storage shape of a mapped entity type (storage name, identity
attribute, persisted attributes) from SQLAlchemy's mapper, or from an
explicitly registered descriptor, and caches the result per type.
"""

import logging
import numbers
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.ext.hybrid import HybridExtensionType
from sqlalchemy.orm import Mapper

from repokit.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Letters, digits and underscore, starting with a letter.
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

PersistencePredicate = Callable[[Mapper, str], bool]


def is_valid_identifier(name: Any) -> bool:
    return isinstance(name, str) and IDENTIFIER_PATTERN.match(name) is not None


def mapped_attribute(mapper: Mapper, key: str) -> bool:
    """Default relevance predicate: column-valued mapped attributes."""
    return key in mapper.column_attrs


@dataclass(frozen=True)
class EntityMetadata:
    """
    Storage shape of one entity type.

    Attributes:
        entity_type: The mapped class
        storage_name: Table name used to qualify identifiers
        identity_field: Name of the single identity attribute (None if undeclared)
        persisted_fields: Persisted attribute names in declaration order
    """
    entity_type: type
    storage_name: str
    identity_field: Optional[str]
    persisted_fields: Tuple[str, ...]

    @property
    def entity_name(self) -> str:
        return self.entity_type.__name__

    def has_field(self, name: str) -> bool:
        return name in self.persisted_fields

    def require_identity(self) -> str:
        """Return the identity attribute name, failing if the type declares none."""
        if self.identity_field is None:
            raise ValidationError(
                f"Entity {self.entity_name} declares no identity attribute",
                hint="Declare exactly one primary key column on the entity.",
                entity=self.entity_name,
            )
        return self.identity_field


class MetadataResolver:
    """
    Memoizing resolver from entity type to EntityMetadata.

    Lookups are lock-free once a type is cached; first access builds the
    metadata under a lock so concurrent first lookups of the same type
    converge to a single cached instance.

    Usage:
        resolver = MetadataResolver()
        meta = resolver.resolve(Task)
        meta.identity_field  # "id"
    """

    def __init__(self, is_persisted: Optional[PersistencePredicate] = None):
        self._is_persisted = is_persisted or mapped_attribute
        self._cache: Dict[type, EntityMetadata] = {}
        self._registered: Dict[type, EntityMetadata] = {}
        self._lock = threading.Lock()

    def register(
        self,
        entity_type: type,
        identity: Optional[str],
        fields: Iterable[str],
        storage_name: Optional[str] = None,
    ) -> EntityMetadata:
        """
        Register an explicit descriptor for an entity type.

        A registered descriptor takes precedence over mapper reflection and is
        validated once here instead of on every lookup.

        Raises:
            ValidationError: If a name is malformed, no field is given, the
                identity is not one of the fields, or a field is not an
                attribute of a mapped type
        """
        name = entity_type.__name__
        persisted = tuple(fields)
        if not persisted:
            raise ValidationError(
                f"Entity {name} must declare at least one persisted field",
                entity=name,
            )
        descriptors = self._orm_descriptors(entity_type)
        for field in persisted:
            if not is_valid_identifier(field):
                raise ValidationError(
                    f"Invalid field name '{field}' for entity {name}",
                    field=str(field),
                    entity=name,
                )
            if descriptors is not None and field not in descriptors:
                raise ValidationError(
                    f"Field '{field}' is not a mapped attribute of {name}",
                    field=field,
                    entity=name,
                )
        if identity is not None and identity not in persisted:
            raise ValidationError(
                f"Identity field '{identity}' is not a persisted field of {name}",
                field=identity,
                entity=name,
            )
        storage = storage_name or name.lower()
        if not is_valid_identifier(storage):
            raise ValidationError(f"Invalid storage name '{storage}' for entity {name}", entity=name)

        metadata = EntityMetadata(
            entity_type=entity_type,
            storage_name=storage,
            identity_field=identity,
            persisted_fields=persisted,
        )
        with self._lock:
            self._registered[entity_type] = metadata
            self._cache[entity_type] = metadata
        logger.debug(f"Registered descriptor for entity {name}")
        return metadata

    def resolve(self, entity_type: type) -> EntityMetadata:
        """
        Get entity metadata, building and caching it on first access.

        Raises:
            ValidationError: If the type is not mapped, has no persisted
                attributes, or declares more than one identity attribute
        """
        metadata = self._cache.get(entity_type)
        if metadata is not None:
            return metadata

        with self._lock:
            metadata = self._cache.get(entity_type)
            if metadata is None:
                metadata = self._registered.get(entity_type) or self._build(entity_type)
                self._cache[entity_type] = metadata
        return metadata

    def attribute_exists(self, entity_type: type, name: str) -> bool:
        """
        Ask the ORM whether ``name`` is a column-valued attribute of the type.

        Mapped columns, column_property expressions and hybrid properties
        qualify. Relationships do not: they cannot be compared to a plain
        value or ordered by.
        """
        try:
            mapper = sa_inspect(entity_type)
        except NoInspectionAvailable:
            return False
        if not isinstance(mapper, Mapper):
            return False
        if name in mapper.column_attrs:
            return True
        if name not in mapper.all_orm_descriptors:
            return False
        return mapper.all_orm_descriptors[name].extension_type is HybridExtensionType.HYBRID_PROPERTY

    @staticmethod
    def _orm_descriptors(entity_type: type):
        try:
            mapper = sa_inspect(entity_type)
        except NoInspectionAvailable:
            return None
        return mapper.all_orm_descriptors if isinstance(mapper, Mapper) else None

    def get_identity(self, entity: Any) -> Any:
        """Return the identity value of an entity instance."""
        identity_field = self.resolve(type(entity)).require_identity()
        return getattr(entity, identity_field, None)

    def is_new(self, entity: Any) -> bool:
        """
        Check if entity is new.

        An entity is new when its identity is unset, or numeric and equal
        to zero. Booleans are not treated as numbers.
        """
        value = self.get_identity(entity)
        if value is None:
            return True
        if isinstance(value, numbers.Number) and not isinstance(value, bool):
            return value == 0
        return False

    def clear_cache(self) -> None:
        """Drop reflected metadata; registered descriptors are kept."""
        with self._lock:
            self._cache = dict(self._registered)
        logger.debug("Metadata cache cleared")

    def _build(self, entity_type: type) -> EntityMetadata:
        name = getattr(entity_type, "__name__", repr(entity_type))
        logger.debug(f"Building metadata for entity: {name}")

        try:
            mapper = sa_inspect(entity_type)
        except NoInspectionAvailable:
            mapper = None
        if not isinstance(mapper, Mapper):
            raise ValidationError(
                f"{name} is not a mapped entity type",
                hint="Declare the class on repokit.models.Base or register a descriptor.",
                entity=name,
            )

        # mapper.attrs already includes attributes inherited from mapped superclasses
        persisted = tuple(
            prop.key for prop in mapper.attrs if self._is_persisted(mapper, prop.key)
        )
        if not persisted:
            raise ValidationError(
                f"Entity {name} has no persisted attributes",
                entity=name,
            )

        identity_keys = [mapper.get_property_by_column(column).key for column in mapper.primary_key]
        if len(identity_keys) > 1:
            raise ValidationError(
                f"Entity {name} declares {len(identity_keys)} identity attributes "
                f"({', '.join(identity_keys)}); exactly one is supported",
                hint="Use a single surrogate primary key column.",
                entity=name,
            )

        table = mapper.local_table
        storage_name = getattr(table, "name", None) or name.lower()

        return EntityMetadata(
            entity_type=entity_type,
            storage_name=storage_name,
            identity_field=identity_keys[0] if identity_keys else None,
            persisted_fields=persisted,
        )


# Shared resolver used by repositories unless one is passed explicitly
metadata_resolver = MetadataResolver()


def register_entity(
    entity_type: type,
    identity: Optional[str],
    fields: Iterable[str],
    storage_name: Optional[str] = None,
) -> EntityMetadata:
    """Register an explicit descriptor on the shared resolver."""
    return metadata_resolver.register(entity_type, identity, fields, storage_name)
