"""Tests for input parsing and field bounds."""

from __future__ import annotations

import pytest

from atlas_tasks.errors import InvalidInput
from atlas_tasks.task_engine.model import TaskPriority, TaskType
from atlas_tasks.task_engine.schemas import BulkOperation, parse_create, parse_operation, parse_update


class TestParseCreate:
    def test_defaults(self):
        data = parse_create({"name": "X"})
        assert data.type == TaskType.TASK
        assert data.description == ""
        assert data.dependencies == []
        assert data.metadata.tags is None

    def test_type_is_case_insensitive(self):
        assert parse_create({"name": "X", "type": "milestone"}).type == TaskType.MILESTONE

    @pytest.mark.parametrize(
        "data, field",
        [
            ({"name": ""}, "name"),
            ({"name": "n" * 201}, "name"),
            ({"name": "X", "dependencies": [f"d{i}" for i in range(51)]}, "dependencies"),
            ({"name": "X", "metadata": {"notes": ["n"] * 26}}, "metadata.notes"),
            ({"name": "X", "metadata": {"notes": ["n" * 1001]}}, "metadata.notes"),
            ({"name": "X", "metadata": {"tags": ["t" * 1001]}}, "metadata.tags"),
            ({"name": "X", "metadata": {"priority": "urgent"}}, "metadata.priority"),
            ({"name": "X", "type": "EPIC"}, "type"),
        ],
    )
    def test_bounds(self, data, field):
        with pytest.raises(InvalidInput) as exc_info:
            parse_create(data)
        assert any(e.startswith(field) for e in exc_info.value.errors)

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidInput):
            parse_create({"name": "X", "owner": "me"})

    def test_tags_deduplicated(self):
        assert parse_create({"name": "X", "metadata": {"tags": ["a", "b", "a"]}}).metadata.tags == ["a", "b"]

    def test_legacy_dependencies(self):
        assert parse_create({"name": "X", "metadata": {"dependencies": ["a"]}}).dependencies == ["a"]


class TestParseUpdate:
    def test_only_given_fields_are_set(self):
        data = parse_update({"metadata": {"priority": "low"}})
        assert data.model_fields_set == {"metadata"}
        assert data.metadata.model_fields_set == {"priority"}
        assert data.metadata.priority == TaskPriority.LOW

    def test_bad_status(self):
        with pytest.raises(InvalidInput) as exc_info:
            parse_update({"status": "archived"})
        assert exc_info.value.errors[0].startswith("status")


class TestParseOperation:
    def test_valid(self):
        op = parse_operation({"type": "delete", "path": "a"})
        assert op.data == {}
        assert parse_operation(op) is op

    def test_unknown_type(self):
        with pytest.raises(InvalidInput):
            parse_operation({"type": "archive", "path": "a"})

    def test_model_passthrough(self):
        op = BulkOperation(type="create", data={"name": "X"})
        assert parse_operation(op).path is None
