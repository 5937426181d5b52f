"""
Tests for entity metadata resolution.

Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import threading

import pytest

from repokit.core.exceptions import ValidationError
from repokit.core.metadata import (
    EntityMetadata,
    MetadataResolver,
    is_valid_identifier,
)

from entities import Label, Membership, Note, Project, Task


class TestIdentifierPattern:
    """Tests for the field name whitelist."""

    @pytest.mark.parametrize("name", ["id", "status", "due_date", "Title2"])
    def test_valid_identifiers(self, name):
        assert is_valid_identifier(name)

    @pytest.mark.parametrize(
        "name",
        ["", "_private", "2fast", "title; DROP TABLE task", "task.id", "due-date", None, 42],
    )
    def test_invalid_identifiers(self, name):
        assert not is_valid_identifier(name)


class TestResolve:
    """Tests for MetadataResolver.resolve()."""

    def test_resolve_mapped_entity(self):
        """
        Arrange: Fresh resolver
        Act: Resolve the Task entity
        Assert: Storage name, identity and persisted fields discovered
        """
        resolver = MetadataResolver()

        meta = resolver.resolve(Task)

        assert meta.entity_type is Task
        assert meta.entity_name == "Task"
        assert meta.storage_name == "task"
        assert meta.identity_field == "id"
        assert {"id", "title", "status", "priority", "due_date", "code", "project_id"} <= set(meta.persisted_fields)

    def test_inherited_mixin_columns_are_persisted(self):
        meta = MetadataResolver().resolve(Task)

        assert meta.has_field("created_at")
        assert meta.has_field("updated_at")

    def test_hybrid_attributes_are_not_persisted_fields(self):
        meta = MetadataResolver().resolve(Task)

        assert not meta.has_field("title_upper")

    def test_relationships_are_not_persisted_fields(self):
        meta = MetadataResolver().resolve(Task)

        assert not meta.has_field("project")
        assert meta.has_field("project_id")

    def test_explicit_table_name_is_storage_name(self):
        assert MetadataResolver().resolve(Note).storage_name == "notes"

    def test_resolve_is_memoized(self):
        resolver = MetadataResolver()

        assert resolver.resolve(Task) is resolver.resolve(Task)

    def test_clear_cache_rebuilds(self):
        resolver = MetadataResolver()
        first = resolver.resolve(Task)

        resolver.clear_cache()
        second = resolver.resolve(Task)

        assert first is not second
        assert first == second

    def test_composite_identity_rejected(self):
        """
        Arrange: Entity with two primary key columns
        Act: Resolve it
        Assert: ValidationError naming the type, never an arbitrary pick
        """
        with pytest.raises(ValidationError) as exc_info:
            MetadataResolver().resolve(Membership)

        assert "Membership" in exc_info.value.message
        assert "exactly one" in exc_info.value.message

    def test_unmapped_class_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            MetadataResolver().resolve(Label)

        assert "not a mapped entity" in exc_info.value.message

    def test_no_persisted_attributes_rejected(self):
        resolver = MetadataResolver(is_persisted=lambda mapper, key: False)

        with pytest.raises(ValidationError) as exc_info:
            resolver.resolve(Task)

        assert "no persisted attributes" in exc_info.value.message

    def test_custom_relevance_predicate(self):
        resolver = MetadataResolver(is_persisted=lambda mapper, key: key in ("id", "title"))

        meta = resolver.resolve(Task)

        assert meta.persisted_fields == ("id", "title")

    def test_concurrent_first_access_converges(self):
        """
        Arrange: Fresh resolver and eight threads
        Act: All threads resolve Task at once
        Assert: Every thread received the same cached instance
        """
        resolver = MetadataResolver()
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(resolver.resolve(Task))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 8
        assert all(result is results[0] for result in results)


class TestRegister:
    """Tests for explicit descriptors."""

    def test_registered_descriptor_takes_precedence(self):
        resolver = MetadataResolver()

        resolver.register(Label, identity="id", fields=["id", "text"], storage_name="labels")
        meta = resolver.resolve(Label)

        assert meta == EntityMetadata(Label, "labels", "id", ("id", "text"))

    def test_registered_descriptor_survives_clear_cache(self):
        resolver = MetadataResolver()
        resolver.register(Label, identity="id", fields=["id", "text"])

        resolver.clear_cache()

        assert resolver.resolve(Label).storage_name == "label"

    def test_register_rejects_bad_field_name(self):
        with pytest.raises(ValidationError) as exc_info:
            MetadataResolver().register(Label, identity="id", fields=["id", "text;--"])

        assert exc_info.value.field == "text;--"

    def test_register_rejects_identity_outside_fields(self):
        with pytest.raises(ValidationError):
            MetadataResolver().register(Label, identity="uuid", fields=["id", "text"])

    def test_register_rejects_field_missing_from_mapped_type(self):
        """
        Arrange: Mapped Project entity
        Act: Register a descriptor naming an attribute Project lacks
        Assert: ValidationError at registration, naming the field
        """
        with pytest.raises(ValidationError) as exc_info:
            MetadataResolver().register(Project, identity="id", fields=["id", "name", "nickname"])

        assert exc_info.value.field == "nickname"
        assert exc_info.value.entity == "Project"

    def test_register_accepts_mapped_attributes(self):
        resolver = MetadataResolver()

        meta = resolver.register(Project, identity="id", fields=["id", "name"], storage_name="projects")

        assert resolver.resolve(Project) is meta

    def test_register_rejects_empty_fields(self):
        with pytest.raises(ValidationError):
            MetadataResolver().register(Label, identity=None, fields=[])

    def test_missing_identity_fails_when_required(self):
        resolver = MetadataResolver()
        meta = resolver.register(Label, identity=None, fields=["text"])

        with pytest.raises(ValidationError) as exc_info:
            meta.require_identity()

        assert "no identity attribute" in exc_info.value.message


class TestIdentityHeuristic:
    """Tests for is_new() and get_identity()."""

    @pytest.mark.parametrize("identity,expected", [(None, True), (0, True), (1, False), (-5, False)])
    def test_numeric_identity(self, identity, expected):
        assert MetadataResolver().is_new(Task(id=identity, title="t")) is expected

    def test_zero_float_identity_is_new(self):
        resolver = MetadataResolver()
        resolver.register(Label, identity="id", fields=["id", "text"])

        assert resolver.is_new(Label(id=0.0))

    @pytest.mark.parametrize("identity,expected", [(None, True), ("0", False), ("abc", False), ("", False)])
    def test_string_identity(self, identity, expected):
        assert MetadataResolver().is_new(Note(id=identity, body="b")) is expected

    def test_boolean_identity_is_not_numeric(self):
        resolver = MetadataResolver()
        resolver.register(Label, identity="id", fields=["id", "text"])

        assert resolver.is_new(Label(id=False)) is False

    def test_get_identity(self):
        assert MetadataResolver().get_identity(Task(id=7, title="t")) == 7

    def test_attribute_exists_covers_hybrids(self):
        resolver = MetadataResolver()

        assert resolver.attribute_exists(Task, "title_upper")
        assert resolver.attribute_exists(Task, "title")
        assert not resolver.attribute_exists(Task, "missing")
        assert not resolver.attribute_exists(Label, "text")

    def test_attribute_exists_excludes_relationships(self):
        assert not MetadataResolver().attribute_exists(Task, "project")
