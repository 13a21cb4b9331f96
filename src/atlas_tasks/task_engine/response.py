"""Result envelope returned by every engine operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..errors import TaskEngineError
from ..utils import _now_iso, _request_id
from .model import Task
from .paths import project_of


def _plain(value: Any) -> Any:
    if isinstance(value, Task):
        return value.to_dict(include_subtasks=True)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


@dataclass
class ResponseMetadata:
    timestamp: str = field(default_factory=_now_iso)
    request_id: str = field(default_factory=_request_id)
    project_path: Optional[str] = None
    affected_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "request_id": self.request_id,
            "project_path": self.project_path,
            "affected_paths": list(self.affected_paths),
        }


@dataclass
class TaskResponse:
    success: bool
    data: Any = None
    error: Optional[dict[str, Any]] = None
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)

    @classmethod
    def ok(
        cls,
        data: Any = None,
        *,
        affected_paths: Iterable[str] = (),
        project_path: Optional[str] = None,
    ) -> "TaskResponse":
        affected = list(dict.fromkeys(affected_paths))
        if project_path is None and affected:
            project_path = project_of(affected[0])
        return cls(
            success=True,
            data=data,
            metadata=ResponseMetadata(project_path=project_path, affected_paths=affected),
        )

    @classmethod
    def from_error(cls, exc: BaseException, *, project_path: Optional[str] = None) -> "TaskResponse":
        """Failure envelope for service layers wrapping engine calls."""
        if isinstance(exc, TaskEngineError):
            error = exc.to_dict()
        else:
            error = {"kind": type(exc).__name__, "message": str(exc)}
        return cls(success=False, error=error, metadata=ResponseMetadata(project_path=project_path))

    def to_dict(self) -> dict[str, Any]:
        data = self.data
        if isinstance(data, list):
            data = [_plain(d) for d in data]
        else:
            data = _plain(data)
        out: dict[str, Any] = {"success": self.success, "metadata": self.metadata.to_dict()}
        if data is not None:
            out["data"] = data
        if self.error is not None:
            out["error"] = dict(self.error)
        return out
