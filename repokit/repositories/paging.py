"""
Sorting and paging value objects.

``Sort`` and ``Order`` describe ORDER BY requests, ``Pageable`` (``PageRequest``
or an unpaged request) describes the window to fetch, and ``Page`` is the
immutable result snapshot assembled by the pagination engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, Iterator, Optional, Tuple, TypeVar, Union

from repokit.core.exceptions import ValidationError

T = TypeVar("T")
U = TypeVar("U")


class Direction(str, Enum):
    """Sort direction."""
    ASC = "ASC"
    DESC = "DESC"

    @property
    def is_ascending(self) -> bool:
        return self is Direction.ASC

    @property
    def is_descending(self) -> bool:
        return self is Direction.DESC

    @classmethod
    def from_string(cls, value: str) -> "Direction":
        try:
            return cls(value.upper())
        except (ValueError, AttributeError):
            raise ValidationError(f"Invalid sort direction: {value!r}", hint="Use 'ASC' or 'DESC'.")


class NullHandling(str, Enum):
    """Placement of NULL values in a sorted result."""
    NATIVE = "NATIVE"
    NULLS_FIRST = "NULLS_FIRST"
    NULLS_LAST = "NULLS_LAST"


@dataclass(frozen=True)
class Order:
    """Ordering of a single property."""
    property: str
    direction: Direction = Direction.ASC
    null_handling: NullHandling = NullHandling.NATIVE

    @classmethod
    def asc(cls, property: str) -> "Order":
        return cls(property, Direction.ASC)

    @classmethod
    def desc(cls, property: str) -> "Order":
        return cls(property, Direction.DESC)

    @property
    def is_ascending(self) -> bool:
        return self.direction.is_ascending

    @property
    def is_descending(self) -> bool:
        return self.direction.is_descending

    def with_direction(self, direction: Direction) -> "Order":
        return Order(self.property, direction, self.null_handling)

    def with_null_handling(self, null_handling: NullHandling) -> "Order":
        return Order(self.property, self.direction, null_handling)

    def nulls_first(self) -> "Order":
        return self.with_null_handling(NullHandling.NULLS_FIRST)

    def nulls_last(self) -> "Order":
        return self.with_null_handling(NullHandling.NULLS_LAST)

    def nulls_native(self) -> "Order":
        return self.with_null_handling(NullHandling.NATIVE)

    def __str__(self) -> str:
        return f"{self.property}: {self.direction.value}"


@dataclass(frozen=True)
class Sort:
    """
    Ordered sequence of ``Order`` specifications.

    Sorts are immutable; combining them with ``and_`` (or ``+``) returns a
    new instance and never touches either operand.

    Example:
        Sort.by("status", "title")
        Sort.by("priority", direction=Direction.DESC).and_(Sort.by("title"))
        Sort.by(Order.desc("due_date").nulls_last())
    """
    orders: Tuple[Order, ...] = ()

    @classmethod
    def by(cls, *properties: Union[str, Order], direction: Direction = Direction.ASC) -> "Sort":
        if not properties:
            return UNSORTED
        orders = tuple(
            item if isinstance(item, Order) else Order(item, direction)
            for item in properties
        )
        return cls(orders)

    @classmethod
    def unsorted(cls) -> "Sort":
        return UNSORTED

    def and_(self, other: "Sort") -> "Sort":
        if not other.orders:
            return self
        if not self.orders:
            return other
        return Sort(self.orders + other.orders)

    def __add__(self, other: "Sort") -> "Sort":
        return self.and_(other)

    def ascending(self) -> "Sort":
        return Sort(tuple(order.with_direction(Direction.ASC) for order in self.orders))

    def descending(self) -> "Sort":
        return Sort(tuple(order.with_direction(Direction.DESC) for order in self.orders))

    def order_for(self, property: str) -> Optional[Order]:
        return next((order for order in self.orders if order.property == property), None)

    def is_sorted(self) -> bool:
        return bool(self.orders)

    def is_unsorted(self) -> bool:
        return not self.orders

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders)

    def __len__(self) -> int:
        return len(self.orders)

    def __str__(self) -> str:
        return ", ".join(str(order) for order in self.orders) if self.orders else "UNSORTED"


UNSORTED = Sort()


class Pageable:
    """
    Request for a bounded, optionally sorted window of results.

    Concrete forms are ``PageRequest`` and the unpaged request returned by
    ``Pageable.unpaged()``.
    """

    sort: Sort

    def is_paged(self) -> bool:
        raise NotImplementedError

    def is_unpaged(self) -> bool:
        return not self.is_paged()

    @property
    def page_number(self) -> int:
        raise NotImplementedError

    @property
    def page_size(self) -> int:
        raise NotImplementedError

    @property
    def offset(self) -> int:
        raise NotImplementedError

    def next(self) -> "Pageable":
        raise NotImplementedError

    def previous_or_first(self) -> "Pageable":
        raise NotImplementedError

    def first(self) -> "Pageable":
        raise NotImplementedError

    def with_page(self, page_number: int) -> "Pageable":
        raise NotImplementedError

    def has_previous(self) -> bool:
        raise NotImplementedError

    @staticmethod
    def unpaged(sort: Optional[Sort] = None) -> "Pageable":
        if sort is None or sort.is_unsorted():
            return UNPAGED
        return Unpaged(sort)


@dataclass(frozen=True)
class PageRequest(Pageable):
    """
    Zero-based page request.

    Raises:
        ValidationError: If page < 0 or size < 1
    """
    page: int
    size: int
    sort: Sort = field(default=UNSORTED)

    def __post_init__(self):
        if isinstance(self.page, bool) or not isinstance(self.page, int):
            raise ValidationError(f"Page index must be an integer, got {self.page!r}")
        if isinstance(self.size, bool) or not isinstance(self.size, int):
            raise ValidationError(f"Page size must be an integer, got {self.size!r}")
        if self.page < 0:
            raise ValidationError(f"Page index must not be less than zero, got {self.page}")
        if self.size < 1:
            raise ValidationError(f"Page size must not be less than one, got {self.size}")
        if self.sort is None:
            object.__setattr__(self, "sort", UNSORTED)

    @classmethod
    def of(cls, page: int, size: int, sort: Optional[Sort] = None) -> "PageRequest":
        return cls(page, size, sort or UNSORTED)

    @classmethod
    def of_size(cls, size: int) -> "PageRequest":
        return cls(0, size)

    def is_paged(self) -> bool:
        return True

    @property
    def page_number(self) -> int:
        return self.page

    @property
    def page_size(self) -> int:
        return self.size

    @property
    def offset(self) -> int:
        # Python integers do not overflow, so large page numbers are exact
        return self.page * self.size

    def next(self) -> "PageRequest":
        return PageRequest(self.page + 1, self.size, self.sort)

    def previous(self) -> "PageRequest":
        return self if self.page == 0 else PageRequest(self.page - 1, self.size, self.sort)

    def previous_or_first(self) -> "PageRequest":
        return self.previous() if self.has_previous() else self.first()

    def first(self) -> "PageRequest":
        return PageRequest(0, self.size, self.sort)

    def with_page(self, page_number: int) -> "PageRequest":
        return PageRequest(page_number, self.size, self.sort)

    def with_sort(self, sort: Sort) -> "PageRequest":
        return PageRequest(self.page, self.size, sort)

    def has_previous(self) -> bool:
        return self.page > 0

    def __str__(self) -> str:
        return f"Page request [number: {self.page}, size {self.size}, sort: {self.sort}]"


@dataclass(frozen=True)
class Unpaged(Pageable):
    """Fetch-everything request; offset and size accessors are errors."""
    sort: Sort = field(default=UNSORTED)

    def is_paged(self) -> bool:
        return False

    def _no_window(self, accessor: str):
        raise ValidationError(
            f"Unpaged request has no {accessor}",
            hint="Check is_paged() before reading page_number, page_size or offset.",
        )

    @property
    def page_number(self) -> int:
        self._no_window("page number")

    @property
    def page_size(self) -> int:
        self._no_window("page size")

    @property
    def offset(self) -> int:
        self._no_window("offset")

    def next(self) -> "Unpaged":
        return self

    def previous_or_first(self) -> "Unpaged":
        return self

    def first(self) -> "Unpaged":
        return self

    def with_page(self, page_number: int) -> "Unpaged":
        if page_number == 0:
            return self
        self._no_window("page other than 0")

    def has_previous(self) -> bool:
        return False


UNPAGED = Unpaged()


@dataclass(frozen=True)
class Page(Generic[T]):
    """
    Immutable snapshot of one page of results.

    Attributes:
        content: Entities on this page
        pageable: The request that produced the page
        total_elements: Total number of matching rows across all pages
    """
    content: Tuple[T, ...]
    pageable: Pageable
    total_elements: int

    def __post_init__(self):
        object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def empty(cls, pageable: Optional[Pageable] = None) -> "Page[T]":
        return cls((), pageable or UNPAGED, 0)

    @property
    def number(self) -> int:
        return self.pageable.page_number if self.pageable.is_paged() else 0

    @property
    def size(self) -> int:
        return self.pageable.page_size if self.pageable.is_paged() else len(self.content)

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def sort(self) -> Sort:
        return self.pageable.sort

    @property
    def total_pages(self) -> int:
        if not self.pageable.is_paged():
            return 1
        # Integer ceiling; float division loses precision on large totals
        return -(-self.total_elements // self.pageable.page_size)

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    @property
    def has_next(self) -> bool:
        return self.number + 1 < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.number > 0

    @property
    def is_first(self) -> bool:
        return not self.has_previous

    @property
    def is_last(self) -> bool:
        return not self.has_next

    def next_pageable(self) -> Pageable:
        return self.pageable.next() if self.has_next else UNPAGED

    def previous_pageable(self) -> Pageable:
        return self.pageable.previous_or_first() if self.has_previous else UNPAGED

    def map(self, converter: Callable[[T], U]) -> "Page[U]":
        """Return a new page with every element converted."""
        return Page(tuple(converter(item) for item in self.content), self.pageable, self.total_elements)

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)

    def __str__(self) -> str:
        return f"Page {self.number + 1} of {self.total_pages} containing {len(self.content)} instances"
