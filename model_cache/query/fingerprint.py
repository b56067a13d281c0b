"""
Query Fingerprinter

Renders a QueryDescriptor into canonical SQL-like text with bound values
inlined as literals. Predicate order is preserved: ``a = 1 and b = 2`` and
``b = 2 and a = 1`` produce different fingerprints.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from model_cache.query.descriptor import Predicate, QueryDescriptor


def quote_identifier(name: str) -> str:
    if name == "*":
        return name
    return ".".join(f'"{part}"' for part in name.split("."))


def render_literal(value: Any) -> str:
    """
    Render a bound value as a literal.

    Types are kept apart in the output (``1`` vs ``'1'`` vs ``true``) so
    values that compare differently never collapse into one fingerprint.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return render_literal(value.value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return f"'{value.isoformat()}'"
    if isinstance(value, UUID):
        return f"'{value}'"
    if isinstance(value, bytes):
        return f"x'{value.hex()}'"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
        return "(" + ", ".join(render_literal(v) for v in items) + ")"
    if isinstance(value, Mapping):
        pairs = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ", ".join(f"{render_literal(k)}: {render_literal(v)}" for k, v in pairs) + "}"
    raise TypeError(f"Cannot render {type(value).__name__} as a query literal")


def render_predicate(predicate: Predicate) -> str:
    column = quote_identifier(predicate.column)
    if predicate.operator.is_unary:
        return f"{column} {predicate.operator.value}"
    return f"{column} {predicate.operator.value} {render_literal(predicate.value)}"


def fingerprint(descriptor: QueryDescriptor) -> str:
    """
    Canonical text of every result-determining clause of ``descriptor``.

    Operation arguments (aggregate column, pluck columns) are not part of
    the fingerprint; the key builder adds them.
    """
    parts = [
        "select",
        ", ".join(quote_identifier(c) for c in descriptor.columns),
        "from",
        quote_identifier(descriptor.entity),
    ]

    if descriptor.predicates:
        parts.append("where")
        parts.append(" and ".join(render_predicate(p) for p in descriptor.predicates))

    if descriptor.orderings:
        parts.append("order by")
        parts.append(
            ", ".join(f"{quote_identifier(o.column)} {o.direction.value}" for o in descriptor.orderings)
        )

    if descriptor.limit is not None:
        parts.append(f"limit {descriptor.limit}")

    if descriptor.offset is not None:
        parts.append(f"offset {descriptor.offset}")

    return " ".join(parts)


__all__ = ["fingerprint", "render_literal", "render_predicate", "quote_identifier"]
