"""
Value Codec
===========

JSON encoding for values held by remote cache stores. Types JSON cannot
represent faithfully (datetimes, decimals, tuples, dicts with non-string
keys) are wrapped in tagged objects and restored on decode. Pickle is
never used.
"""

from __future__ import annotations

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

TYPE_MARKER = "__mc_type__"


class UnsupportedValueError(TypeError):
    """Raised for values the codec cannot represent."""


def _tagged(kind: str, value: Any) -> dict[str, Any]:
    return {TYPE_MARKER: kind, "v": value}


def to_jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    if isinstance(value, tuple):
        return _tagged("tuple", [to_jsonable(v) for v in value])
    if isinstance(value, dict):
        if all(isinstance(k, str) for k in value) and TYPE_MARKER not in value:
            return {k: to_jsonable(v) for k, v in value.items()}
        return _tagged("pairs", [[to_jsonable(k), to_jsonable(v)] for k, v in value.items()])
    if isinstance(value, datetime):
        return _tagged("datetime", value.isoformat())
    if isinstance(value, date):
        return _tagged("date", value.isoformat())
    if isinstance(value, time):
        return _tagged("time", value.isoformat())
    if isinstance(value, Decimal):
        return _tagged("decimal", str(value))
    if isinstance(value, UUID):
        return _tagged("uuid", str(value))
    if isinstance(value, bytes):
        return _tagged("bytes", value.hex())
    raise UnsupportedValueError(f"{type(value).__name__} is not supported by the cache codec")


def from_jsonable(value: Any) -> Any:
    if isinstance(value, list):
        return [from_jsonable(v) for v in value]
    if not isinstance(value, dict):
        return value

    kind = value.get(TYPE_MARKER)
    if kind is None:
        return {k: from_jsonable(v) for k, v in value.items()}

    payload = value["v"]
    if kind == "tuple":
        return tuple(from_jsonable(v) for v in payload)
    if kind == "pairs":
        return {_hashable(from_jsonable(k)): from_jsonable(v) for k, v in payload}
    if kind == "datetime":
        return datetime.fromisoformat(payload)
    if kind == "date":
        return date.fromisoformat(payload)
    if kind == "time":
        return time.fromisoformat(payload)
    if kind == "decimal":
        return Decimal(payload)
    if kind == "uuid":
        return UUID(payload)
    if kind == "bytes":
        return bytes.fromhex(payload)
    raise ValueError(f"Unknown cache codec tag: {kind}")


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    return value


def encode(value: Any) -> bytes:
    """Encode a value to bytes; raises UnsupportedValueError."""
    return json.dumps(to_jsonable(value), separators=(",", ":")).encode("utf-8")


def decode(data: bytes | str) -> Any:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return from_jsonable(json.loads(data))


__all__ = ["TYPE_MARKER", "UnsupportedValueError", "decode", "encode", "from_jsonable", "to_jsonable"]
