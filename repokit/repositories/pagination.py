"""
Pagination engine.

Runs the count query and, when anything matches, the windowed fetch for the
same filter inside one session so both observe the same snapshot.
"""

import logging
from typing import Generic, List, Optional, TypeVar

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.orm import Session

from repokit.core.exceptions import ValidationError
from repokit.core.executor import fetch_all, fetch_count
from repokit.repositories.paging import Page, Pageable, Sort
from repokit.repositories.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Paginator(Generic[T]):
    """
    Builds Page snapshots for one entity type.

    Usage:
        paginator = Paginator(QueryBuilder(Task), max_page_size=500)
        page = paginator.paginate(session, PageRequest.of(0, 20, Sort.by("title")))
    """

    def __init__(self, builder: QueryBuilder, max_page_size: int = 1000):
        self.builder = builder
        self.max_page_size = max_page_size

    def check_pageable(self, pageable: Pageable, operation: Optional[str] = None) -> None:
        """
        Raises:
            ValidationError: If the requested page size exceeds max_page_size
        """
        if pageable.is_paged() and pageable.page_size > self.max_page_size:
            raise ValidationError(
                f"Page size {pageable.page_size} exceeds the maximum of {self.max_page_size}",
                hint="Request smaller pages or raise REPOKIT_MAX_PAGE_SIZE.",
                operation=operation,
            )

    def fetch(
        self,
        session: Session,
        where: Optional[ColumnElement[bool]] = None,
        sort: Optional[Sort] = None,
    ) -> List[T]:
        """Unpaged fetch; a non-empty sort gets the identity tiebreak."""
        entity_type = self.builder.entity_type
        stmt = select(entity_type)
        if where is not None:
            stmt = stmt.where(where)
        if sort is not None and sort.is_sorted():
            stmt = stmt.order_by(*self.builder.build_order_by(sort, tiebreak=True))
        return fetch_all(session, stmt, self.builder.metadata.entity_name)

    def count(self, session: Session, where: Optional[ColumnElement[bool]] = None) -> int:
        stmt = select(func.count()).select_from(self.builder.entity_type)
        if where is not None:
            stmt = stmt.where(where)
        return fetch_count(session, stmt, self.builder.metadata.entity_name)

    def paginate(
        self,
        session: Session,
        pageable: Pageable,
        where: Optional[ColumnElement[bool]] = None,
        operation: Optional[str] = None,
    ) -> Page[T]:
        """
        Fetch one page of entities matching ``where``.

        The count runs first for paged and unpaged requests alike, and its
        result is the page's total. A zero count returns an empty page
        without a data query. Paged fetches are always ordered, with the
        identity attribute appended as a tiebreak, so consecutive pages
        neither overlap nor skip rows.

        Args:
            session: Session to query on
            pageable: PageRequest or unpaged request
            where: Optional filter clause
            operation: Operation name for error context

        Returns:
            Page snapshot
        """
        self.check_pageable(pageable, operation)

        total = self.count(session, where)
        if total == 0:
            logger.debug(
                "Empty count, skipping page fetch",
                extra={"entity": self.builder.metadata.entity_name, "operation": operation},
            )
            return Page((), pageable, 0)

        if pageable.is_unpaged():
            return Page(self.fetch(session, where, pageable.sort), pageable, total)

        stmt = select(self.builder.entity_type)
        if where is not None:
            stmt = stmt.where(where)
        stmt = (
            stmt.order_by(*self.builder.build_order_by(pageable.sort, tiebreak=True))
            .offset(pageable.offset)
            .limit(pageable.page_size)
        )
        content = fetch_all(session, stmt, self.builder.metadata.entity_name)
        return Page(content, pageable, total)
