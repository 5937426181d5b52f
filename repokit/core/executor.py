"""
Statement execution helpers.

Thin wrappers over ``Session.execute`` that log row counts and latency for
every statement the repository layer issues.
"""

import logging
import time
from typing import Any, List, Optional

from sqlalchemy import Delete, Select, Update
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def fetch_all(session: Session, stmt: Select, entity: Optional[str] = None) -> List[Any]:
    """
    Execute an entity SELECT and return the mapped instances.

    Args:
        session: Session to execute on
        stmt: ``select(Entity)`` statement
        entity: Entity name for log context

    Returns:
        List of entity instances
    """
    start = time.perf_counter()
    results = list(session.scalars(stmt).all())
    logger.debug(
        "Query executed",
        extra={"entity": entity, "rows": len(results), "latency_ms": _elapsed_ms(start)},
    )
    return results


def fetch_count(session: Session, stmt: Select, entity: Optional[str] = None) -> int:
    """Execute a COUNT statement and return its value (0 when NULL)."""
    start = time.perf_counter()
    total = session.scalar(stmt) or 0
    logger.debug(
        "Count query executed",
        extra={"entity": entity, "rows": total, "latency_ms": _elapsed_ms(start)},
    )
    return int(total)


def execute_update(session: Session, stmt: Delete | Update, entity: Optional[str] = None) -> int:
    """
    Execute a bulk DELETE/UPDATE and return the affected row count.

    Instances already loaded in the session are synchronized with the
    statement (SQLAlchemy "auto" strategy), so read-your-writes holds
    inside one transaction.
    """
    start = time.perf_counter()
    result = session.execute(stmt)
    affected = result.rowcount if result.rowcount is not None else 0
    logger.debug(
        "Update query executed",
        extra={"entity": entity, "rows": affected, "latency_ms": _elapsed_ms(start)},
    )
    return affected
