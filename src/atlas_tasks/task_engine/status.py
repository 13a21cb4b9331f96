"""Task lifecycle state machine.

Every transition is open to direct updates except the dependency guard:
``in_progress`` and ``completed`` cannot be entered while a dependency is
incomplete.  Such a request parks the task in ``blocked`` and remembers the
requested status so it can be retried once the blockers clear.

The same resolution function drives both direct updates and cascade
recomputation, so the two paths can never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .model import TaskStatus, TaskType

# Statuses that require every dependency to be completed.
GATED_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED})

TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    status: {other for other in TaskStatus if other != status} for status in TaskStatus
}

GUARDS: dict[str, str] = {
    "in_progress": "all dependencies completed, otherwise the task is parked in blocked",
    "completed": "all dependencies completed, otherwise the task is parked in blocked; "
                 "a MILESTONE with children additionally requires every child completed",
    "blocked": "held only while at least one dependency is incomplete",
}


@dataclass(frozen=True)
class Resolution:
    status: TaskStatus
    retry_status: Optional[TaskStatus] = None


def resolve_status(
    requested: TaskStatus,
    incomplete: Iterable[str],
    retry_status: Optional[TaskStatus] = None,
) -> Resolution:
    """Resolve the status a task should hold given its incomplete dependencies.

    Args:
        requested: The status asked for (or the task's current status when
            recomputing).
        incomplete: Direct dependencies that are not completed.
        retry_status: The retry target previously recorded on the task.
    """
    blocked = bool(list(incomplete))
    if requested in GATED_STATUSES:
        if blocked:
            return Resolution(TaskStatus.BLOCKED, requested)
        return Resolution(requested)
    if requested == TaskStatus.BLOCKED:
        if blocked:
            return Resolution(TaskStatus.BLOCKED, retry_status)
        return Resolution(retry_status or TaskStatus.PENDING)
    return Resolution(requested)


def milestone_target(
    current: TaskStatus,
    retry_status: Optional[TaskStatus],
    child_statuses: Iterable[TaskStatus],
) -> Optional[TaskStatus]:
    """Status a MILESTONE should move toward given its direct children.

    Returns None when the milestone needs no change.  A milestone without
    children is left alone.
    """
    statuses = list(child_statuses)
    if not statuses:
        return None
    if all(s == TaskStatus.COMPLETED for s in statuses):
        if current == TaskStatus.COMPLETED:
            return None
        if current == TaskStatus.BLOCKED and retry_status == TaskStatus.COMPLETED:
            return None
        return TaskStatus.COMPLETED
    started = any(s in GATED_STATUSES for s in statuses)
    if current == TaskStatus.COMPLETED:
        return TaskStatus.IN_PROGRESS if started else TaskStatus.PENDING
    if current == TaskStatus.BLOCKED and retry_status == TaskStatus.COMPLETED:
        # Still blocked by dependencies, but completion is no longer earned.
        return TaskStatus.BLOCKED
    return None


def settle_status(
    task_type: TaskType,
    requested: TaskStatus,
    retry_status: Optional[TaskStatus],
    incomplete: Iterable[str],
    child_statuses: Iterable[TaskStatus] = (),
) -> Resolution:
    """Combine the milestone rule and the dependency guard into one resolution."""
    if task_type == TaskType.MILESTONE:
        target = milestone_target(requested, retry_status, child_statuses)
        if target is not None:
            requested, retry_status = target, None
    return resolve_status(requested, incomplete, retry_status)


def milestone_allows(requested: TaskStatus, child_statuses: Iterable[TaskStatus]) -> bool:
    """Direct-update guard: completed iff every child is completed."""
    statuses = list(child_statuses)
    if not statuses:
        return True
    all_done = all(s == TaskStatus.COMPLETED for s in statuses)
    if requested == TaskStatus.COMPLETED:
        return all_done
    if requested == TaskStatus.BLOCKED:
        return True
    return not all_done


def describe_state_machine() -> dict[str, Any]:
    return {
        "states": [s.value for s in TaskStatus],
        "transitions": {s.value: sorted(t.value for t in targets) for s, targets in TRANSITIONS.items()},
        "guards": dict(GUARDS),
        "defaults": {"initial": TaskStatus.PENDING.value, "unblocked": TaskStatus.PENDING.value},
    }
