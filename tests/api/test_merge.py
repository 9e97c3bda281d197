"""
Unit tests for partial-update merging.
"""

import pytest
from pydantic import ValidationError
from sqlalchemy.dialects import postgresql

from api.database import books
from api.merge import PRESENT, TRUTHY, build_patch_statement, collect_update_fields, parse_patch
from api.models import BookPatch


class TestParsePatch:
    """Test cases for parse_patch."""

    def test_truthy_mode_drops_falsy_values_of_any_type(self):
        patch = parse_patch({"price": "", "title": False, "author": 0, "stock": 3})
        assert collect_update_fields(patch) == {"stock": 3}

    def test_truthy_mode_still_validates_kept_values(self):
        with pytest.raises(ValidationError):
            parse_patch({"price": "cheap", "stock": 3})

    def test_present_mode_validates_every_value(self):
        with pytest.raises(ValidationError):
            parse_patch({"price": "", "stock": 3}, PRESENT)

    def test_present_mode_keeps_zero(self):
        patch = parse_patch({"stock": 0}, PRESENT)
        assert collect_update_fields(patch, PRESENT) == {"stock": 0}


class TestCollectUpdateFields:
    """Test cases for collect_update_fields."""

    def test_only_supplied_fields(self):
        patch = BookPatch(title="Emma", stock=3)
        assert collect_update_fields(patch) == {"title": "Emma", "stock": 3}

    def test_empty_patch(self):
        assert collect_update_fields(BookPatch()) == {}

    def test_truthy_filter_drops_falsy_values(self):
        patch = BookPatch(title="", price=0, stock=0, genre="Drama")
        assert collect_update_fields(patch, TRUTHY) == {"genre": "Drama"}

    def test_truthy_filter_drops_explicit_nulls(self):
        patch = BookPatch.model_validate({"author": None, "price": 4.5})
        assert collect_update_fields(patch, TRUTHY) == {"price": 4.5}

    def test_present_filter_keeps_zero_values(self):
        patch = BookPatch(price=0, stock=0)
        assert collect_update_fields(patch, PRESENT) == {"price": 0, "stock": 0}

    def test_present_filter_drops_explicit_nulls(self):
        patch = BookPatch.model_validate({"author": None, "title": ""})
        assert collect_update_fields(patch, PRESENT) == {"title": ""}

    def test_column_order(self):
        patch = BookPatch.model_validate({"stock": 1, "title": "Emma", "price": 2.0})
        assert list(collect_update_fields(patch)) == ["title", "price", "stock"]

    def test_unknown_filter(self):
        with pytest.raises(ValueError):
            collect_update_fields(BookPatch(title="Emma"), "loose")


class TestBuildPatchStatement:
    """Test cases for build_patch_statement."""

    def compile(self, stmt):
        return stmt.compile(dialect=postgresql.dialect())

    def test_set_clause_touches_only_given_fields(self):
        compiled = self.compile(build_patch_statement(books, 7, {"title": "Emma", "stock": 2}))
        set_clause, _, rest = str(compiled).partition(" WHERE ")

        assert set_clause.startswith("UPDATE books SET ")
        assert "title" in set_clause and "stock" in set_clause
        for untouched in ("author", "genre", "price"):
            assert untouched not in set_clause
        assert "RETURNING" in rest
        assert compiled.params == {"title": "Emma", "stock": 2, "id_1": 7}

    def test_values_are_bound_parameters(self):
        compiled = self.compile(build_patch_statement(books, 1, {"title": "x'; DROP TABLE books; --"}))
        assert "DROP TABLE" not in str(compiled)
        assert compiled.params["title"] == "x'; DROP TABLE books; --"

    def test_empty_field_set(self):
        with pytest.raises(ValueError, match="No fields to update"):
            build_patch_statement(books, 1, {})

    def test_unknown_column(self):
        with pytest.raises(ValueError):
            build_patch_statement(books, 1, {"id": 9})
