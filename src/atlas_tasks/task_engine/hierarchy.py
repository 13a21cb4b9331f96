"""Containment rules: which task types may hold which child types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..errors import InvalidHierarchy
from .model import TaskType

_ALLOWED_CHILDREN: dict[TaskType, frozenset[TaskType]] = {
    TaskType.MILESTONE: frozenset({TaskType.TASK, TaskType.GROUP}),
    TaskType.GROUP: frozenset({TaskType.TASK}),
    TaskType.TASK: frozenset(),
}

_RULES_HINT = (
    "MILESTONE can contain TASK and GROUP; "
    "GROUP can only contain TASK; "
    "TASK cannot contain any subtasks"
)


@dataclass(frozen=True)
class HierarchyDecision:
    allowed: bool
    reason: Optional[str] = None


def check_hierarchy(parent_type: Optional[TaskType], child_type: TaskType) -> HierarchyDecision:
    """Decide whether *child_type* may sit below *parent_type*.

    A missing parent (root-level task) accepts every type.
    """
    if parent_type is None:
        return HierarchyDecision(True)
    if child_type in _ALLOWED_CHILDREN[parent_type]:
        return HierarchyDecision(True)
    if parent_type == TaskType.TASK:
        reason = f"TASK cannot contain subtasks (attempted child type {child_type.value})"
    else:
        reason = f"{parent_type.value} cannot contain {child_type.value} children ({_RULES_HINT})"
    return HierarchyDecision(False, reason)


def require_allowed(parent_type: Optional[TaskType], child_type: TaskType) -> None:
    decision = check_hierarchy(parent_type, child_type)
    if not decision.allowed and parent_type is not None:
        raise InvalidHierarchy(parent_type.value, child_type.value, decision.reason or "")


def allowed_children(parent_type: TaskType) -> list[TaskType]:
    return sorted(_ALLOWED_CHILDREN[parent_type], key=lambda t: t.value)
