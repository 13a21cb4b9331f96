"""Error taxonomy for the task engine.

Every error raised by the core derives from :class:`TaskEngineError` and
carries a stable ``kind`` string so that service layers can map it onto a
response envelope without inspecting messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class TaskEngineError(Exception):
    """Base class for all task engine errors."""

    kind = "TaskEngineError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        details = self.details()
        if details:
            data["details"] = details
        return data


class InvalidInput(TaskEngineError):
    """Field-level input violation (bounds, unknown fields, bad enums)."""

    kind = "InvalidInput"

    def __init__(self, reason: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(reason)
        self.errors = list(errors or [])

    def details(self) -> dict[str, Any]:
        return {"errors": list(self.errors)} if self.errors else {}


class InvalidPath(TaskEngineError):
    """Malformed, over-depth or over-length path.

    ``rule`` names the violated rule so callers can report it precisely.
    """

    kind = "InvalidPath"

    def __init__(self, path: str, rule: str, reason: str) -> None:
        super().__init__(f"Invalid path '{path}': {reason}")
        self.path = path
        self.rule = rule
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "rule": self.rule}


class InvalidHierarchy(TaskEngineError):
    kind = "InvalidHierarchy"

    def __init__(self, parent_type: str, child_type: str, reason: str) -> None:
        super().__init__(reason)
        self.parent_type = parent_type
        self.child_type = child_type
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {"parent_type": self.parent_type, "child_type": self.child_type}


class TaskNotFound(TaskEngineError):
    """A referenced path does not exist.

    ``role`` is one of ``target``, ``parent`` or ``dependency``.
    """

    kind = "TaskNotFound"

    def __init__(self, path: str, role: str = "target") -> None:
        label = "Task" if role == "target" else f"{role.capitalize()} task"
        super().__init__(f"{label} not found: {path}")
        self.path = path
        self.role = role

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "role": self.role}


class TaskExists(TaskEngineError):
    kind = "TaskExists"

    def __init__(self, path: str) -> None:
        super().__init__(f"Task already exists: {path}")
        self.path = path

    def details(self) -> dict[str, Any]:
        return {"path": self.path}


class CyclicDependency(TaskEngineError):
    kind = "CyclicDependency"

    def __init__(self, source: str, target: str) -> None:
        if source == target:
            message = f"Task {source} cannot depend on itself"
        else:
            message = f"Adding dependency {source} -> {target} would create a cycle"
        super().__init__(message)
        self.source = source
        self.target = target

    def details(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target}


class InvalidStatus(TaskEngineError):
    kind = "InvalidStatus"

    def __init__(self, path: str, status: str, reason: str) -> None:
        super().__init__(reason)
        self.path = path
        self.status = status

    def details(self) -> dict[str, Any]:
        return {"path": self.path, "status": self.status}


@dataclass
class OperationFailure:
    """One failing operation inside a rejected batch."""

    index: int
    op_type: str
    path: Optional[str]
    error: TaskEngineError

    @property
    def reason(self) -> str:
        return self.error.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "type": self.op_type,
            "path": self.path,
            "error": self.error.to_dict(),
        }


class BatchValidationFailed(TaskEngineError):
    """One or more operations in a batch failed validation; nothing was applied."""

    kind = "BatchValidationFailed"

    def __init__(self, failures: list[OperationFailure]) -> None:
        indexes = ", ".join(str(f.index) for f in failures)
        super().__init__(f"Batch rejected: {len(failures)} operation(s) failed validation (index {indexes})")
        self.failures = list(failures)

    def details(self) -> dict[str, Any]:
        return {"failures": [f.to_dict() for f in self.failures]}


class StoreError(TaskEngineError):
    """The persistence collaborator failed. Never retried by the core."""

    kind = "StoreError"

    def __init__(self, message: str, operation: Optional[str] = None, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.path = path

    def details(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.operation:
            data["operation"] = self.operation
        if self.path:
            data["path"] = self.path
        return data
