"""
Tests for the Query Engine interface
====================================

Tests for model_cache/query/engine.py
"""

from model_cache.query.engine import Page, QueryEngine, SimplePage
from tests.stubs import FakeQueryEngine


class TestPage:
    def test_last_page(self):
        assert Page(items=[], total=5, per_page=2, current_page=1).last_page == 3
        assert Page(items=[], total=0, per_page=2, current_page=1).last_page == 1

    def test_has_more_pages(self):
        assert Page(items=[], total=5, per_page=2, current_page=2).has_more_pages
        assert not Page(items=[], total=5, per_page=2, current_page=3).has_more_pages


class TestSimplePage:
    def test_from_rows_with_extra_row(self):
        page = SimplePage.from_rows([{"id": 1}, {"id": 2}, {"id": 3}], per_page=2, current_page=1)

        assert page.items == [{"id": 1}, {"id": 2}]
        assert page.has_more_pages

    def test_from_rows_last_page(self):
        page = SimplePage.from_rows([{"id": 3}], per_page=2, current_page=2)

        assert page.items == [{"id": 3}]
        assert not page.has_more_pages


def test_fake_engine_satisfies_protocol():
    assert isinstance(FakeQueryEngine(), QueryEngine)
