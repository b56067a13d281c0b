"""
Query Layer
===========

Structured query descriptors, their canonical fingerprints and the
engine protocol the cache delegates execution to.
"""

from model_cache.query.descriptor import (
    ALL_COLUMNS,
    Direction,
    Operator,
    Ordering,
    Predicate,
    QueryDescriptor,
)
from model_cache.query.engine import Page, QueryEngine, Row, SimplePage
from model_cache.query.fingerprint import fingerprint

__all__ = [
    "ALL_COLUMNS",
    "Direction",
    "Operator",
    "Ordering",
    "Predicate",
    "QueryDescriptor",
    "QueryEngine",
    "Row",
    "Page",
    "SimplePage",
    "fingerprint",
]
