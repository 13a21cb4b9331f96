"""Tests for status resolution, the milestone rule and introspection."""

from __future__ import annotations

import pytest

from atlas_tasks.task_engine.model import TaskStatus, TaskType
from atlas_tasks.task_engine.status import (
    Resolution,
    describe_state_machine,
    milestone_allows,
    milestone_target,
    resolve_status,
    settle_status,
)

P = TaskStatus.PENDING
IP = TaskStatus.IN_PROGRESS
C = TaskStatus.COMPLETED
F = TaskStatus.FAILED
B = TaskStatus.BLOCKED


class TestResolveStatus:
    @pytest.mark.parametrize("requested", [IP, C])
    def test_gated_status_blocks_on_incomplete_dependency(self, requested) -> None:
        assert resolve_status(requested, ["dep"]) == Resolution(B, requested)

    @pytest.mark.parametrize("requested", [IP, C])
    def test_gated_status_passes_when_clear(self, requested) -> None:
        assert resolve_status(requested, []) == Resolution(requested)

    def test_blocked_without_blockers_moves_to_retry_target(self) -> None:
        assert resolve_status(B, [], C) == Resolution(C)

    def test_blocked_without_blockers_or_retry_moves_to_pending(self) -> None:
        assert resolve_status(B, []) == Resolution(P)

    def test_blocked_keeps_retry_while_blocked(self) -> None:
        assert resolve_status(B, ["dep"], IP) == Resolution(B, IP)

    @pytest.mark.parametrize("requested", [P, F])
    def test_pending_and_failed_are_never_altered(self, requested) -> None:
        assert resolve_status(requested, ["dep"], IP) == Resolution(requested)


class TestMilestoneRule:
    def test_no_children_needs_nothing(self) -> None:
        assert milestone_target(P, None, []) is None

    def test_all_children_complete(self) -> None:
        assert milestone_target(P, None, [C, C]) == C
        assert milestone_target(C, None, [C, C]) is None

    def test_regresses_when_child_reopens(self) -> None:
        assert milestone_target(C, None, [C, P]) == IP
        assert milestone_target(C, None, [P, P]) == P

    def test_blocked_completion_waits_for_dependencies(self) -> None:
        assert milestone_target(B, C, [C]) is None
        assert milestone_target(B, C, [P]) == B

    def test_partial_completion_leaves_status(self) -> None:
        assert milestone_target(P, None, [C, P]) is None
        assert milestone_target(IP, None, [C, P]) is None

    def test_settle_blocks_completion_on_dependencies(self) -> None:
        assert settle_status(TaskType.MILESTONE, P, None, ["dep"], [C]) == Resolution(B, C)

    def test_settle_drops_unearned_completion(self) -> None:
        assert settle_status(TaskType.MILESTONE, B, C, ["dep"], [P]) == Resolution(B)

    def test_settle_ignores_children_of_groups(self) -> None:
        assert settle_status(TaskType.GROUP, P, None, [], [C, C]) == Resolution(P)

    def test_direct_update_guard(self) -> None:
        assert milestone_allows(C, [])
        assert not milestone_allows(C, [C, P])
        assert milestone_allows(C, [C, C])
        assert not milestone_allows(IP, [C, C])
        assert milestone_allows(IP, [C, P])
        assert milestone_allows(B, [C, C])


class TestDescribe:
    def test_shape(self) -> None:
        info = describe_state_machine()
        assert info["states"] == ["pending", "in_progress", "completed", "failed", "blocked"]
        assert info["transitions"]["pending"] == ["blocked", "completed", "failed", "in_progress"]
        assert "completed" in info["guards"]
        assert info["defaults"]["initial"] == "pending"
