"""
Tests for dynamic filter and ORDER BY construction.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import logging

import pytest
from sqlalchemy import select

from repokit.core.exceptions import ValidationError
from repokit.repositories.paging import Order, Sort
from repokit.repositories.query_builder import (
    Operator,
    Predicate,
    QueryBuilder,
    escape_like,
)

from entities import Task


@pytest.fixture
def builder() -> QueryBuilder:
    return QueryBuilder(Task)


class TestFieldValidation:
    """Tests for the field name whitelist."""

    def test_persisted_field_is_valid(self, builder):
        assert builder.validate_field("status") == "status"

    def test_orm_attribute_is_valid_via_fallback(self, builder):
        assert builder.is_valid_field("title_upper")

    def test_relationship_is_not_a_field(self, builder):
        """
        Arrange: Task with a many-to-one relationship to Project
        Act: Validate the relationship name
        Assert: Rejected; only column-valued attributes can be filtered
        """
        assert not builder.is_valid_field("project")
        with pytest.raises(ValidationError) as exc_info:
            builder.build_filter([Predicate.eq("project", 1)])

        assert exc_info.value.field == "project"

    @pytest.mark.parametrize(
        "name",
        ["nonexistent", "status; DROP TABLE task", "task.status", "_sa_instance_state", "1=1", ""],
    )
    def test_invalid_field_rejected(self, builder, name):
        """
        Arrange: Builder for Task
        Act: Validate a malformed or unknown name
        Assert: ValidationError naming the field and entity
        """
        with pytest.raises(ValidationError) as exc_info:
            builder.validate_field(name, operation="find by field")

        assert exc_info.value.field == name
        assert exc_info.value.entity == "Task"
        assert exc_info.value.operation == "find by field"


class TestBuildFilter:
    """Tests for build_filter()."""

    def test_equality_binds_named_parameter(self, builder):
        fragment = builder.build_filter([Predicate.eq("status", "NEW")])

        assert fragment.text == "task.status = :p0"
        assert fragment.params == {"p0": "NEW"}

    def test_predicates_combined_with_and(self, builder):
        """
        Arrange: Two equality predicates
        Act: Build the filter
        Assert: AND of both, each value in its own parameter
        """
        fragment = builder.build_filter([Predicate.eq("status", "NEW"), Predicate.eq("priority", 3)])

        assert fragment.text == "task.status = :p0 AND task.priority = :p1"
        assert fragment.params == {"p0": "NEW", "p1": 3}

    def test_values_never_inlined(self, builder):
        hostile = "x' OR '1'='1"

        fragment = builder.build_filter([Predicate.eq("title", hostile)])

        assert hostile not in fragment.text
        assert fragment.params["p0"] == hostile

    def test_none_equality_becomes_is_null(self, builder):
        fragment = builder.build_filter([Predicate.eq("due_date", None)])

        assert fragment.text == "task.due_date IS NULL"
        assert fragment.params == {}

    def test_null_checks(self, builder):
        assert builder.build_filter([Predicate.is_null("code")]).text == "task.code IS NULL"
        assert builder.build_filter([Predicate.is_not_null("code")]).text == "task.code IS NOT NULL"

    def test_in_uses_expanding_parameter(self, builder):
        fragment = builder.build_filter([Predicate.in_("status", ["NEW", "DONE"])])

        assert fragment.params == {"p0": ["NEW", "DONE"]}
        assert "task.status IN" in fragment.text

    def test_empty_in_matches_nothing(self, builder):
        fragment = builder.build_filter([Predicate.in_("status", [])])

        assert fragment.params == {}
        assert "status" not in fragment.text

    def test_between_binds_both_bounds(self, builder):
        fragment = builder.build_filter([Predicate.between("priority", 1, 5)])

        assert fragment.text == "task.priority BETWEEN :p0 AND :p1"
        assert fragment.params == {"p0": 1, "p1": 5}

    @pytest.mark.parametrize(
        "predicate,expected",
        [
            (Predicate.starts_with("title", "Wri"), "Wri%"),
            (Predicate.ends_with("title", "docs"), "%docs"),
            (Predicate.containing("title", "te d"), "%te d%"),
        ],
    )
    def test_text_match_patterns(self, builder, predicate, expected):
        fragment = builder.build_filter([predicate])

        assert fragment.params == {"p0": expected}
        assert "LIKE :p0" in fragment.text

    def test_text_match_escapes_wildcards(self, builder):
        fragment = builder.build_filter([Predicate.containing("title", "50%_off")])

        assert fragment.params == {"p0": "%50\\%\\_off%"}

    def test_one_invalid_field_fails_whole_filter(self, builder):
        with pytest.raises(ValidationError) as exc_info:
            builder.build_filter([Predicate.eq("status", "NEW"), Predicate.eq("bogus", 1)])

        assert exc_info.value.field == "bogus"

    def test_empty_predicate_list_rejected(self, builder):
        with pytest.raises(ValidationError):
            builder.build_filter([])

    def test_equality_filter_from_mapping(self, builder):
        fragment = builder.build_equality_filter({"status": "NEW", "code": None})

        assert fragment.text == "task.status = :p0 AND task.code IS NULL"

    def test_clause_usable_in_select(self, builder):
        fragment = builder.build_filter([Predicate.eq("status", "NEW")])

        stmt = select(Task).where(fragment.clause)

        assert "WHERE task.status = :p0" in str(stmt)


class TestEscapeLike:
    """Tests for escape_like()."""

    def test_escapes_wildcards_and_escape_char(self):
        assert escape_like("a%b_c\\d") == "a\\%b\\_c\\\\d"

    def test_plain_text_unchanged(self):
        assert escape_like("plain text") == "plain text"


class TestBuildOrderBy:
    """Tests for ORDER BY rendering."""

    def test_orders_rendered_in_caller_sequence(self, builder):
        rendered = builder.render_order_by(Sort.by("status").and_(Sort.by("priority").descending()))

        assert rendered == "task.status ASC, task.priority DESC"

    def test_unsorted_renders_nothing(self, builder):
        assert builder.build_order_by(Sort.unsorted()) == []
        assert builder.build_order_by(None) == []

    def test_tiebreak_appends_identity(self, builder):
        assert builder.render_order_by(Sort.by("status"), tiebreak=True) == "task.status ASC, task.id ASC"

    def test_tiebreak_not_duplicated(self, builder):
        rendered = builder.render_order_by(Sort.by("id").descending(), tiebreak=True)

        assert rendered == "task.id DESC"

    def test_tiebreak_on_unsorted(self, builder):
        assert builder.render_order_by(None, tiebreak=True) == "task.id ASC"

    def test_null_handling(self, builder):
        rendered = builder.render_order_by(Sort.by(Order.desc("due_date").nulls_last()))

        assert rendered == "task.due_date DESC NULLS LAST"

    def test_invalid_sort_field_dropped_with_warning(self, builder, caplog):
        """
        Arrange: Sort mixing valid and invalid keys
        Act: Build ORDER BY
        Assert: Invalid key dropped and logged, valid keys kept in order
        """
        sort = Sort.by("status", "no_such_field", "title; DROP TABLE task", "title")

        with caplog.at_level(logging.WARNING, logger="repokit.repositories.query_builder"):
            rendered = builder.render_order_by(sort)

        assert rendered == "task.status ASC, task.title ASC"
        assert "no_such_field" in caplog.text

    def test_relationship_sort_key_dropped_with_warning(self, builder, caplog):
        with caplog.at_level(logging.WARNING, logger="repokit.repositories.query_builder"):
            rendered = builder.render_order_by(Sort.by("project", "title"))

        assert rendered == "task.title ASC"
        assert "project" in caplog.text

    def test_operator_enum_values(self):
        assert Predicate.in_("status", ("NEW",)).operator is Operator.IN
        assert Predicate.in_("status", iter(["NEW"])).value == ("NEW",)
