"""
Dynamic filter and ORDER BY construction.

Field names arriving from callers are untrusted: every name is checked
against the entity's metadata before it reaches a statement, and every
value travels as a named bound parameter, never as SQL text.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import ColumnElement, and_, bindparam, false
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import UnaryExpression

from repokit.core.exceptions import ValidationError
from repokit.core.metadata import EntityMetadata, MetadataResolver, is_valid_identifier, metadata_resolver
from repokit.repositories.paging import NullHandling, Order, Sort

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"


class Operator(str, Enum):
    """Comparison operators supported by ``Predicate``."""
    EQ = "EQ"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"
    IN = "IN"
    BETWEEN = "BETWEEN"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    CONTAINS = "CONTAINS"


@dataclass(frozen=True)
class Predicate:
    """
    One field condition.

    ``value`` is the operand (a collection for IN, the lower bound for
    BETWEEN); ``upper`` is only used by BETWEEN.
    """
    field: str
    operator: Operator
    value: Any = None
    upper: Any = None

    @classmethod
    def eq(cls, field: str, value: Any) -> "Predicate":
        return cls(field, Operator.EQ, value)

    @classmethod
    def is_null(cls, field: str) -> "Predicate":
        return cls(field, Operator.IS_NULL)

    @classmethod
    def is_not_null(cls, field: str) -> "Predicate":
        return cls(field, Operator.IS_NOT_NULL)

    @classmethod
    def in_(cls, field: str, values: Iterable[Any]) -> "Predicate":
        return cls(field, Operator.IN, tuple(values))

    @classmethod
    def between(cls, field: str, lower: Any, upper: Any) -> "Predicate":
        return cls(field, Operator.BETWEEN, lower, upper)

    @classmethod
    def starts_with(cls, field: str, prefix: str) -> "Predicate":
        return cls(field, Operator.STARTS_WITH, prefix)

    @classmethod
    def ends_with(cls, field: str, suffix: str) -> "Predicate":
        return cls(field, Operator.ENDS_WITH, suffix)

    @classmethod
    def containing(cls, field: str, fragment: str) -> "Predicate":
        return cls(field, Operator.CONTAINS, fragment)


@dataclass(frozen=True)
class QueryFragment:
    """
    A WHERE condition plus the parameters bound into it.

    Attributes:
        clause: SQLAlchemy boolean expression, ready for ``.where()``
        params: Parameter name to value, in binding order
    """
    clause: ColumnElement[bool]
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Clause rendered with named placeholders (``task.status = :p0``)."""
        return str(self.clause)

    def __str__(self) -> str:
        return self.text


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


class _ParamCounter:
    """Issues p0, p1, ... names for one fragment."""

    def __init__(self):
        self.params: Dict[str, Any] = {}

    def bind(self, value: Any, expanding: bool = False):
        name = f"p{len(self.params)}"
        self.params[name] = value
        return bindparam(name, value, expanding=expanding)


class QueryBuilder:
    """
    Builds validated WHERE and ORDER BY clauses for one entity type.

    Filter fields are validated strictly: an unknown or malformed name fails
    the call. Sort fields are validated leniently: an unknown name is logged
    and dropped so the rest of the ordering still applies.

    Usage:
        builder = QueryBuilder(Task)
        fragment = builder.build_filter([Predicate.eq("status", "NEW")])
        stmt = select(Task).where(fragment.clause)
        stmt = stmt.order_by(*builder.build_order_by(Sort.by("title")))
    """

    def __init__(self, entity_type: type, resolver: Optional[MetadataResolver] = None):
        self.entity_type = entity_type
        self.resolver = resolver or metadata_resolver

    @property
    def metadata(self) -> EntityMetadata:
        return self.resolver.resolve(self.entity_type)

    # ------------------------------------------------------------------
    # Field validation
    # ------------------------------------------------------------------

    def is_valid_field(self, name: Any) -> bool:
        """
        Check that ``name`` is a well-formed identifier naming a
        column-valued attribute of the entity (a mapped column or a hybrid).

        Relationships are rejected even when listed as persisted fields.
        """
        if not is_valid_identifier(name):
            return False
        return self.resolver.attribute_exists(self.entity_type, name)

    def validate_field(self, name: Any, operation: Optional[str] = None) -> str:
        """
        Return ``name`` unchanged if it is a valid field.

        Raises:
            ValidationError: If the name is malformed or unknown
        """
        if self.is_valid_field(name):
            return name
        entity = self.metadata.entity_name
        raise ValidationError(
            f"Invalid field name '{name}' for entity {entity}",
            hint=f"Valid fields: {', '.join(self.metadata.persisted_fields)}",
            operation=operation,
            field=str(name),
            entity=entity,
        )

    def column(self, name: str) -> InstrumentedAttribute:
        """Return the mapped attribute for an already validated field name."""
        return getattr(self.entity_type, name)

    def identity_column(self) -> InstrumentedAttribute:
        return self.column(self.metadata.require_identity())

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def build_filter(
        self,
        predicates: Sequence[Predicate],
        operation: Optional[str] = None,
    ) -> QueryFragment:
        """
        Combine predicates with AND into one fragment.

        Every field is validated before any clause is built, so a bad name
        anywhere in the list fails the whole call.

        Raises:
            ValidationError: If the list is empty or any field is invalid
        """
        if not predicates:
            raise ValidationError("At least one filter condition is required", operation=operation)
        for predicate in predicates:
            self.validate_field(predicate.field, operation)

        counter = _ParamCounter()
        clauses = [self._render(predicate, counter) for predicate in predicates]
        clause = clauses[0] if len(clauses) == 1 else and_(*clauses)
        return QueryFragment(clause, counter.params)

    def build_equality_filter(
        self,
        criteria: Mapping[str, Any],
        operation: Optional[str] = None,
    ) -> QueryFragment:
        """AND of ``field = value`` for every entry; None values become IS NULL."""
        if not criteria:
            raise ValidationError("At least one filter condition is required", operation=operation)
        return self.build_filter([Predicate.eq(name, value) for name, value in criteria.items()], operation)

    def _render(self, predicate: Predicate, counter: _ParamCounter) -> ColumnElement[bool]:
        column = self.column(predicate.field)
        op = predicate.operator

        if op is Operator.EQ:
            if predicate.value is None:
                return column.is_(None)
            return column == counter.bind(predicate.value)
        if op is Operator.IS_NULL:
            return column.is_(None)
        if op is Operator.IS_NOT_NULL:
            return column.is_not(None)
        if op is Operator.IN:
            values = list(predicate.value or ())
            if not values:
                # Empty IN matches nothing
                return false()
            return column.in_(counter.bind(values, expanding=True))
        if op is Operator.BETWEEN:
            return column.between(counter.bind(predicate.value), counter.bind(predicate.upper))
        if op is Operator.STARTS_WITH:
            return column.like(counter.bind(f"{escape_like(str(predicate.value))}%"), escape=LIKE_ESCAPE)
        if op is Operator.ENDS_WITH:
            return column.like(counter.bind(f"%{escape_like(str(predicate.value))}"), escape=LIKE_ESCAPE)
        if op is Operator.CONTAINS:
            return column.like(counter.bind(f"%{escape_like(str(predicate.value))}%"), escape=LIKE_ESCAPE)

        raise ValidationError(f"Unsupported operator: {op}")

    # ------------------------------------------------------------------
    # ORDER BY
    # ------------------------------------------------------------------

    def valid_orders(self, sort: Optional[Sort]) -> List[Order]:
        """Orders of ``sort`` whose property is a valid field; others are dropped with a warning."""
        if sort is None or sort.is_unsorted():
            return []
        kept = []
        for order in sort:
            if self.is_valid_field(order.property):
                kept.append(order)
            else:
                logger.warning(
                    f"Ignoring invalid sort field '{order.property}' for entity {self.metadata.entity_name}",
                    extra={"entity": self.metadata.entity_name, "field": str(order.property)},
                )
        return kept

    def build_order_by(self, sort: Optional[Sort], tiebreak: bool = False) -> List[UnaryExpression]:
        """
        Render a Sort as ORDER BY expressions.

        Args:
            sort: Requested ordering (None or unsorted yields no expressions
                unless ``tiebreak`` is set)
            tiebreak: Append the identity column ascending when the ordering
                does not already include it, so equal sort keys page stably

        Returns:
            List of expressions for ``Select.order_by``
        """
        orders = self.valid_orders(sort)
        expressions = [self._render_order(order) for order in orders]

        if tiebreak:
            identity = self.metadata.identity_field
            if identity is not None and all(order.property != identity for order in orders):
                expressions.append(self.column(identity).asc())
        return expressions

    def render_order_by(self, sort: Optional[Sort], tiebreak: bool = False) -> str:
        """ORDER BY body as text, e.g. ``task.status ASC, task.id ASC``; empty when unsorted."""
        return ", ".join(str(expression) for expression in self.build_order_by(sort, tiebreak))

    def _render_order(self, order: Order) -> UnaryExpression:
        column = self.column(order.property)
        expression = column.asc() if order.is_ascending else column.desc()
        if order.null_handling is NullHandling.NULLS_FIRST:
            expression = expression.nulls_first()
        elif order.null_handling is NullHandling.NULLS_LAST:
            expression = expression.nulls_last()
        return expression
