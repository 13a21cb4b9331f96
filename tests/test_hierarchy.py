"""Tests for the containment rules between task types."""

from __future__ import annotations

import pytest

from atlas_tasks.errors import InvalidHierarchy
from atlas_tasks.task_engine.hierarchy import allowed_children, check_hierarchy, require_allowed
from atlas_tasks.task_engine.model import TaskType

M, G, T = TaskType.MILESTONE, TaskType.GROUP, TaskType.TASK


class TestCheckHierarchy:
    @pytest.mark.parametrize(
        "parent, child, allowed",
        [
            (M, T, True),
            (M, G, True),
            (M, M, False),
            (G, T, True),
            (G, G, False),
            (G, M, False),
            (T, T, False),
            (T, G, False),
            (T, M, False),
        ],
    )
    def test_table(self, parent, child, allowed) -> None:
        decision = check_hierarchy(parent, child)
        assert decision.allowed is allowed
        assert (decision.reason is None) is allowed

    @pytest.mark.parametrize("child", [M, G, T])
    def test_root_accepts_everything(self, child) -> None:
        assert check_hierarchy(None, child).allowed

    def test_task_reason_mentions_subtasks(self) -> None:
        assert "TASK cannot contain subtasks" in check_hierarchy(T, T).reason


class TestRequireAllowed:
    def test_raises_with_types(self) -> None:
        with pytest.raises(InvalidHierarchy) as exc_info:
            require_allowed(G, M)
        assert exc_info.value.parent_type == "GROUP"
        assert exc_info.value.child_type == "MILESTONE"
        assert exc_info.value.to_dict()["kind"] == "InvalidHierarchy"

    def test_allowed_pair_passes(self) -> None:
        require_allowed(M, G)
        require_allowed(None, M)

    def test_allowed_children(self) -> None:
        assert allowed_children(M) == [G, T]
        assert allowed_children(G) == [T]
        assert allowed_children(T) == []
