"""
Query Descriptor

Immutable structured description of a query: predicates, ordering,
projection and limit/offset. Built by callers, read-only to the cache.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)?$")

ALL_COLUMNS: tuple[str, ...] = ("*",)


def validate_identifier(name: str, param_name: str = "identifier") -> str:
    """
    Validate that a string is a safe column or entity identifier.

    Args:
        name: The identifier to validate
        param_name: Name of the parameter (for error messages)

    Returns:
        The validated identifier

    Raises:
        ValueError: If the identifier is invalid
    """
    if not name:
        raise ValueError(f"{param_name} cannot be empty")
    if name == "*":
        return name
    if not VALID_IDENTIFIER_PATTERN.match(name):
        raise ValueError(
            f"Invalid {param_name}: must be alphanumeric with underscores, "
            "starting with letter or underscore"
        )
    if len(name) > 64:
        raise ValueError(f"{param_name} too long (max 64 characters)")
    return name


class Operator(str, Enum):
    """Comparison operators a predicate may use."""

    EQ = "="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    IN = "in"
    NOT_IN = "not in"
    IS_NULL = "is null"
    IS_NOT_NULL = "is not null"
    LIKE = "like"

    @property
    def is_set_operator(self) -> bool:
        return self in (Operator.IN, Operator.NOT_IN)

    @property
    def is_unary(self) -> bool:
        return self in (Operator.IS_NULL, Operator.IS_NOT_NULL)

    @classmethod
    def parse(cls, value: Operator | str) -> Operator:
        if isinstance(value, Operator):
            return value
        normalized = " ".join(str(value).lower().split())
        if normalized == "<>":
            return cls.NE
        return cls(normalized)


class Direction(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Predicate:
    """A single ``column <operator> value`` constraint."""

    column: str
    operator: Operator
    value: Any = None

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        if self.operator.is_set_operator:
            # Freeze membership lists; order is kept as given.
            object.__setattr__(self, "value", tuple(self.value))


@dataclass(frozen=True)
class Ordering:
    column: str
    direction: Direction = Direction.ASC

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")


@dataclass(frozen=True)
class QueryDescriptor:
    """
    Structured query against one entity.

    Every builder method returns a new descriptor, so instances can be
    shared between cached calls.
    """

    entity: str
    predicates: tuple[Predicate, ...] = ()
    orderings: tuple[Ordering, ...] = ()
    columns: tuple[str, ...] = ALL_COLUMNS
    limit: int | None = None
    offset: int | None = None

    def __post_init__(self) -> None:
        validate_identifier(self.entity, "entity")
        for column in self.columns:
            validate_identifier(column, "column")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit cannot be negative")
        if self.offset is not None and self.offset < 0:
            raise ValueError("offset cannot be negative")

    # =========================================================================
    # Builders
    # =========================================================================

    def where(self, column: str, operator: Operator | str = Operator.EQ, value: Any = None) -> QueryDescriptor:
        op = Operator.parse(operator)
        if op.is_set_operator:
            return self.where_in(column, value, negate=op is Operator.NOT_IN)
        return replace(self, predicates=self.predicates + (Predicate(column, op, value),))

    def where_in(self, column: str, values: Iterable[Any], negate: bool = False) -> QueryDescriptor:
        op = Operator.NOT_IN if negate else Operator.IN
        return replace(self, predicates=self.predicates + (Predicate(column, op, tuple(values)),))

    def where_null(self, column: str, negate: bool = False) -> QueryDescriptor:
        op = Operator.IS_NOT_NULL if negate else Operator.IS_NULL
        return replace(self, predicates=self.predicates + (Predicate(column, op),))

    def order_by(self, column: str, direction: Direction | str = Direction.ASC) -> QueryDescriptor:
        ordering = Ordering(column, Direction(direction.lower()))
        return replace(self, orderings=self.orderings + (ordering,))

    def select(self, columns: Sequence[str] | str) -> QueryDescriptor:
        return replace(self, columns=normalize_columns(columns))

    def take(self, limit: int | None) -> QueryDescriptor:
        return replace(self, limit=limit)

    def skip(self, offset: int | None) -> QueryDescriptor:
        return replace(self, offset=offset)

    def for_page(self, page: int, per_page: int) -> QueryDescriptor:
        if page < 1:
            raise ValueError("page must be >= 1")
        if per_page < 1:
            raise ValueError("per_page must be >= 1")
        return replace(self, limit=per_page, offset=(page - 1) * per_page)

    def without_paging(self) -> QueryDescriptor:
        return replace(self, limit=None, offset=None, orderings=())


def normalize_columns(columns: Sequence[str] | str | None) -> tuple[str, ...]:
    """Turn ``"name"``, ``["name", "id"]`` or ``None`` into a column tuple."""
    if columns is None:
        return ALL_COLUMNS
    if isinstance(columns, str):
        columns = [columns]
    result = tuple(validate_identifier(c, "column") for c in columns)
    return result or ALL_COLUMNS


__all__ = [
    "ALL_COLUMNS",
    "Direction",
    "Operator",
    "Ordering",
    "Predicate",
    "QueryDescriptor",
    "normalize_columns",
    "validate_identifier",
]
