"""Path-addressed task engine.

This package provides the task model, the dependency graph and status
machine, the bulk operation coordinator, the bundled stores, and the
:class:`TaskEngine` facade that ties them together.
"""

from __future__ import annotations

from .bulk import BatchResult, BulkOperationCoordinator, OperationResult
from .cascade import CascadeEngine
from .engine import TaskEngine
from .graph import DependencyGraph
from .model import Task, TaskMetadata, TaskPriority, TaskStatus, TaskType
from .response import ResponseMetadata, TaskResponse
from .store import FileTaskStore, MemoryTaskStore, SqliteTaskStore, TaskStore, create_store

__all__ = [
    "BatchResult",
    "BulkOperationCoordinator",
    "CascadeEngine",
    "DependencyGraph",
    "FileTaskStore",
    "MemoryTaskStore",
    "OperationResult",
    "ResponseMetadata",
    "SqliteTaskStore",
    "Task",
    "TaskEngine",
    "TaskMetadata",
    "TaskPriority",
    "TaskResponse",
    "TaskStatus",
    "TaskStore",
    "TaskType",
    "create_store",
]
