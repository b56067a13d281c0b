"""
Query Engine Interface

The cache never executes queries itself; it delegates to an engine
implementing this protocol (an ORM session adapter, a SQL runner, ...).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from model_cache.query.descriptor import QueryDescriptor

Row = dict[str, Any]


@runtime_checkable
class QueryEngine(Protocol):
    """Executes structured queries against the backing data store."""

    def run_collection(self, descriptor: QueryDescriptor) -> list[Row]:
        """All rows matching the descriptor, in its ordering."""
        ...

    def run_single(self, descriptor: QueryDescriptor) -> Row | None:
        """The first matching row, or None."""
        ...

    def run_aggregate(self, descriptor: QueryDescriptor, function: str, column: str) -> Any:
        """``sum``/``avg``/``min``/``max`` of ``column`` over matching rows."""
        ...

    def run_count(self, descriptor: QueryDescriptor, column: str = "*") -> int:
        """Matching rows; for a named column, rows where it is not null."""
        ...

    def run_exists(self, descriptor: QueryDescriptor) -> bool:
        ...

    def run_paginated(self, descriptor: QueryDescriptor, page_size: int) -> tuple[list[Row], int]:
        """
        Items of the page described by ``descriptor`` (limit/offset set)
        plus the total number of rows matching it without paging.
        """
        ...

    def run_paginated_simple(self, descriptor: QueryDescriptor, page_size: int) -> list[Row]:
        """
        Items of the page without a total. Returns up to ``page_size + 1``
        rows so the caller can tell whether another page exists.
        """
        ...


@dataclass
class Page:
    """Length-aware page of results."""

    items: list[Row]
    total: int
    per_page: int
    current_page: int

    @property
    def last_page(self) -> int:
        return max(1, -(-self.total // self.per_page))

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page


@dataclass
class SimplePage:
    """Page of results without a total count."""

    items: list[Row]
    per_page: int
    current_page: int
    has_more_pages: bool = False

    @classmethod
    def from_rows(cls, rows: Sequence[Row], per_page: int, current_page: int) -> SimplePage:
        return cls(
            items=list(rows[:per_page]),
            per_page=per_page,
            current_page=current_page,
            has_more_pages=len(rows) > per_page,
        )


__all__ = ["Row", "QueryEngine", "Page", "SimplePage"]
