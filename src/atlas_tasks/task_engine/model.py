"""Task model for the path-addressed task engine.

This module defines the task entity: its type, lifecycle status, hierarchy
links, dependencies, and a fixed metadata structure.  Tasks are plain
dataclasses that serialize to YAML / JSON dictionaries for persistence.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..constants import PATH_SEPARATOR
from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskType(str, Enum):
    """The kind of node a task is in the hierarchy."""

    TASK = "TASK"
    MILESTONE = "MILESTONE"
    GROUP = "GROUP"


class TaskStatus(str, Enum):
    """Lifecycle status of a single task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _enum(enum_cls: type[Enum], raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except (ValueError, KeyError):
        return default


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

@dataclass
class TaskMetadata:
    """Bounded auxiliary fields. ``version`` and ``project_path`` are engine-owned."""

    priority: Optional[TaskPriority] = None
    tags: list[str] = field(default_factory=list)
    assignee: Optional[str] = None
    reasoning: Optional[str] = None
    notes: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    version: int = 1
    project_path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority.value if self.priority else None,
            "tags": list(self.tags),
            "assignee": self.assignee,
            "reasoning": self.reasoning,
            "notes": list(self.notes),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "project_path": self.project_path,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "TaskMetadata":
        d = dict(data or {})
        return cls(
            priority=_enum(TaskPriority, d.get("priority"), None),
            tags=list(d.get("tags", []) or []),
            assignee=d.get("assignee"),
            reasoning=d.get("reasoning"),
            notes=list(d.get("notes", []) or []),
            created_at=str(d.get("created_at") or _now_iso()),
            updated_at=str(d.get("updated_at") or _now_iso()),
            version=int(d.get("version", 1) or 1),
            project_path=str(d.get("project_path") or ""),
        )


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of work addressed by its hierarchical ``path``."""

    path: str
    name: str = ""
    description: str = ""
    type: TaskType = TaskType.TASK
    status: TaskStatus = TaskStatus.PENDING

    # Hierarchy (weak reference, lookup only)
    parent_path: Optional[str] = None
    # Derived from the store on every read; never persisted
    subtasks: list[str] = field(default_factory=list)

    dependencies: list[str] = field(default_factory=list)
    # Status the caller asked for when the task was forced into BLOCKED
    retry_status: Optional[TaskStatus] = None

    metadata: TaskMetadata = field(default_factory=TaskMetadata)

    def __post_init__(self) -> None:
        if not self.metadata.project_path:
            self.metadata.project_path = self.path.split(PATH_SEPARATOR)[0]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self, *, include_subtasks: bool = False) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {
            "path": self.path,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "status": self.status.value,
            "parent_path": self.parent_path,
            "dependencies": list(self.dependencies),
            "retry_status": self.retry_status.value if self.retry_status else None,
            "metadata": self.metadata.to_dict(),
        }
        if include_subtasks:
            data["subtasks"] = list(self.subtasks)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)
        return cls(
            path=str(d["path"]),
            name=str(d.get("name") or ""),
            description=str(d.get("description") or ""),
            type=_enum(TaskType, d.get("type"), TaskType.TASK),
            status=_enum(TaskStatus, d.get("status"), TaskStatus.PENDING),
            parent_path=d.get("parent_path") or None,
            subtasks=list(d.get("subtasks", []) or []),
            dependencies=list(d.get("dependencies", []) or []),
            retry_status=_enum(TaskStatus, d.get("retry_status"), None),
            metadata=TaskMetadata.from_dict(d.get("metadata")),
        )

    def clone(self) -> "Task":
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self.metadata.version

    @property
    def project_path(self) -> str:
        return self.metadata.project_path

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.metadata.updated_at = _now_iso()

    def bump_version(self) -> None:
        """Record a persisted change: version + 1 and a fresh timestamp."""
        self.metadata.version += 1
        self.touch()

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


# ---------------------------------------------------------------------------
# Legacy compatibility
# ---------------------------------------------------------------------------

def normalize_legacy_dependencies(data: dict[str, Any]) -> dict[str, Any]:
    """Move ``metadata.dependencies`` into the first-class ``dependencies`` field.

    Older clients embedded dependencies in the metadata bag.  Rule: a
    top-level ``dependencies`` value wins; otherwise the metadata list is
    promoted.  ``metadata.dependencies`` is always dropped.  Returns a new
    dict; the input is not modified.
    """
    d = dict(data)
    metadata = d.get("metadata")
    if not isinstance(metadata, dict) or "dependencies" not in metadata:
        return d
    metadata = dict(metadata)
    legacy = metadata.pop("dependencies")
    d["metadata"] = metadata
    if d.get("dependencies") is None and legacy is not None:
        d["dependencies"] = legacy
    return d
