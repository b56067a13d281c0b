"""
Tests for the Value Codec
=========================

Tests for model_cache/caching/serialization.py
"""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import uuid4

import pytest

from model_cache.caching.serialization import TYPE_MARKER, UnsupportedValueError, decode, encode


class TestCodec:
    """Encode/decode of cached results."""

    @pytest.mark.parametrize("value", [None, 0, False, "", [], {}, 1.5, "text"])
    def test_falsy_and_plain_values_survive(self, value):
        restored = decode(encode(value))

        assert restored == value
        assert type(restored) is type(value)

    def test_rows(self):
        rows = [{"id": 1, "name": "A", "tags": ["x"]}, {"id": 2, "name": None, "tags": []}]

        assert decode(encode(rows)) == rows

    def test_non_string_keys(self):
        plucked = {1: "A", 2: "B"}

        assert decode(encode(plucked)) == plucked

    def test_dict_containing_the_marker_key(self):
        value = {TYPE_MARKER: "tuple", "v": [1]}

        assert decode(encode(value)) == value

    def test_rich_scalars(self):
        value = {
            "at": datetime(2024, 5, 1, 12, 30, tzinfo=UTC),
            "on": date(2024, 5, 1),
            "time": time(8, 15),
            "price": Decimal("9.99"),
            "uid": uuid4(),
            "raw": b"\x00\xff",
            "pair": (1, "a"),
        }

        assert decode(encode(value)) == value

    def test_decode_accepts_str(self):
        assert decode('{"a": 1}') == {"a": 1}

    def test_unsupported_value(self):
        with pytest.raises(UnsupportedValueError):
            encode({"payload": object()})

    def test_unknown_tag(self):
        with pytest.raises(ValueError, match="Unknown"):
            decode('{"__mc_type__": "pickle", "v": ""}')
