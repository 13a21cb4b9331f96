"""Bulk operation coordinator.

A batch is an ordered list of ``{type, path, data}`` operations.  It runs in
two passes:

1. **Validate.**  Every operation is checked against the persisted tasks plus
   the effects of the earlier operations of the same batch.  A failing
   operation leaves that in-batch state untouched and its error is recorded;
   validation carries on so the caller sees every failure at once.
2. **Apply.**  Only when nothing failed: the planned writes go to the store
   in submitted order inside one ``store.transaction()``, followed by a single
   cascade over everything the batch touched.

Single-item engine calls are one-operation batches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from loguru import logger

from ..config import PathLimits
from ..errors import (
    BatchValidationFailed,
    CyclicDependency,
    InvalidInput,
    InvalidPath,
    InvalidStatus,
    OperationFailure,
    TaskEngineError,
    TaskExists,
    TaskNotFound,
)
from .cascade import CascadeEngine
from .graph import DependencyGraph
from .hierarchy import require_allowed
from .model import Task, TaskMetadata, TaskStatus, TaskType
from .paths import DEFAULT_LIMITS, ancestors_of, depth_of, derive_path, is_ancestor, normalize_path
from .schemas import BulkOperation, parse_create, parse_operation, parse_update
from .status import milestone_allows, settle_status
from .store import TaskStore


@dataclass
class OperationResult:
    index: int
    op_type: str
    path: str
    task: Optional[Task] = None
    deleted: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"index": self.index, "type": self.op_type, "path": self.path}
        if self.task is not None:
            data["task"] = self.task.to_dict()
        if self.deleted:
            data["deleted"] = list(self.deleted)
        return data


@dataclass
class BatchResult:
    results: list[OperationResult]
    affected_paths: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "affected_paths": list(self.affected_paths),
        }


@dataclass
class _Step:
    """The writes one validated operation will perform."""

    result: OperationResult
    saves: list[Task] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    seeds: list[str] = field(default_factory=list)


class _BatchState:
    """Persisted tasks overlaid with the validated operations so far."""

    def __init__(self, tasks: Iterable[Task]) -> None:
        self.tasks: dict[str, Task] = {t.path: t for t in tasks}
        self.graph = DependencyGraph.from_tasks(self.tasks.values())

    def children_of(self, path: str) -> list[Task]:
        return [t for t in self.tasks.values() if t.parent_path == path]

    def status_of(self, path: str) -> Optional[TaskStatus]:
        task = self.tasks.get(path)
        return task.status if task else None


# ---------------------------------------------------------------------------
# Helpers shared by the planners
# ---------------------------------------------------------------------------

def _normalize_dependencies(path: str, raw: Iterable[str], state: _BatchState, limits: PathLimits) -> list[str]:
    deps: list[str] = []
    for item in raw:
        dep = normalize_path(item, limits)
        if dep == path:
            raise CyclicDependency(path, dep)
        if dep not in state.tasks:
            raise TaskNotFound(dep, "dependency")
        if dep not in deps:
            deps.append(dep)
    return deps


def _check_cycles(graph: DependencyGraph, path: str, deps: Sequence[str]) -> None:
    current = graph.dependencies_of(path)
    for dep in deps:
        if dep not in current and graph.would_create_cycle(path, dep):
            raise CyclicDependency(path, dep)


def _require_path(op: BulkOperation, limits: PathLimits) -> str:
    if not op.path:
        raise InvalidInput(f"'{op.type}' operation requires a path")
    return normalize_path(op.path, limits)


def _descendants(path: str, tasks: Iterable[str]) -> list[str]:
    return [p for p in tasks if is_ancestor(path, p)]


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class BulkOperationCoordinator:
    def __init__(self, store: TaskStore, limits: PathLimits = DEFAULT_LIMITS) -> None:
        self.store = store
        self.limits = limits
        self.cascade = CascadeEngine(store)

    def apply(self, operations: Sequence[Any]) -> BatchResult:
        """Validate and apply *operations* as one unit.

        Raises:
            BatchValidationFailed: when any operation is invalid. Nothing is
                written in that case.
        """
        steps = self.plan(operations)

        affected: dict[str, None] = {}
        saved: set[str] = set()
        seeds: dict[str, None] = {}
        with self.store.transaction():
            for step in steps:
                for path in step.deletes:
                    self.store.delete(path)
                    saved.discard(path)
                    affected[path] = None
                for task in step.saves:
                    self.store.save(task)
                    saved.add(task.path)
                    affected[task.path] = None
                seeds.update(dict.fromkeys(step.seeds))
            changed = self.cascade.run(seeds, saved=saved)
        affected.update(dict.fromkeys(changed))

        results = [step.result for step in steps]
        if changed:
            # Report the post-cascade state of every task the batch returned.
            for result in results:
                if result.task is not None and result.path in changed:
                    result.task = self.store.get(result.path) or result.task
        logger.debug("Applied batch of {} operation(s); {} path(s) affected", len(steps), len(affected))
        return BatchResult(results=results, affected_paths=list(affected))

    def plan(self, operations: Sequence[Any]) -> list["_Step"]:
        """Validate every operation; returns the planned writes in order."""
        if not operations:
            raise InvalidInput("Batch must contain at least one operation")
        state = _BatchState(self.store.list_all())
        steps: list[_Step] = []
        failures: list[OperationFailure] = []
        for index, raw in enumerate(operations):
            op_type = raw.get("type") if isinstance(raw, dict) else getattr(raw, "type", None)
            op_path = raw.get("path") if isinstance(raw, dict) else getattr(raw, "path", None)
            try:
                op = parse_operation(raw)
                if op.type == "create":
                    step = self._plan_create(index, op, state)
                elif op.type == "update":
                    step = self._plan_update(index, op, state)
                else:
                    step = self._plan_delete(index, op, state)
            except TaskEngineError as exc:
                failures.append(OperationFailure(index, str(op_type or "unknown"), op_path, exc))
                continue
            steps.append(step)
        if failures:
            raise BatchValidationFailed(failures)
        return steps

    # -- create -------------------------------------------------------------

    def _plan_create(self, index: int, op: BulkOperation, state: _BatchState) -> _Step:
        data = parse_create(op.data)
        parent_path = normalize_path(data.parent_path, self.limits) if data.parent_path else None

        raw_path = op.path or data.path
        if raw_path:
            path = normalize_path(raw_path, self.limits)
        else:
            path = derive_path(data.name, parent_path, self.limits)
        if path in state.tasks:
            raise TaskExists(path)

        if parent_path is not None:
            if not is_ancestor(parent_path, path):
                raise InvalidPath(path, "parent_prefix", f"parent '{parent_path}' is not an ancestor of the path")
            if parent_path not in state.tasks:
                raise TaskNotFound(parent_path, "parent")
        else:
            parent_path = next((a for a in ancestors_of(path) if a in state.tasks), None)
        if parent_path is not None:
            require_allowed(state.tasks[parent_path].type, data.type)

        # Tasks already nested below the new path whose parent link skips over
        # it become its children, so prefix and parent link stay in agreement.
        adopted: list[Task] = []
        for nested in _descendants(path, state.tasks):
            child = state.tasks[nested]
            if child.parent_path == path or (child.parent_path and is_ancestor(path, child.parent_path)):
                continue
            require_allowed(data.type, child.type)
            adopted.append(child)

        deps = _normalize_dependencies(path, data.dependencies, state, self.limits)
        meta = data.metadata
        task = Task(
            path=path,
            name=data.name,
            description=data.description,
            type=data.type,
            status=TaskStatus.PENDING,
            parent_path=parent_path,
            dependencies=deps,
            metadata=TaskMetadata(
                priority=meta.priority,
                tags=list(meta.tags or []),
                assignee=meta.assignee,
                reasoning=meta.reasoning,
                notes=list(meta.notes or []),
            ),
        )

        state.graph.set_dependencies(path, deps)
        state.tasks[path] = task
        saves = [task.clone()]
        seeds = [path]
        for child in adopted:
            moved = child.clone()
            if moved.parent_path:
                seeds.append(moved.parent_path)
            moved.parent_path = path
            moved.bump_version()
            state.tasks[moved.path] = moved
            saves.append(moved.clone())
        result = OperationResult(index, "create", path, task=task.clone())
        return _Step(result=result, saves=saves, seeds=seeds)

    # -- update -------------------------------------------------------------

    def _plan_update(self, index: int, op: BulkOperation, state: _BatchState) -> _Step:
        path = _require_path(op, self.limits)
        if path not in state.tasks:
            raise TaskNotFound(path)
        data = parse_update(op.data)
        fields_set = data.model_fields_set
        task = state.tasks[path].clone()

        if data.name is not None:
            task.name = data.name
        if data.description is not None:
            task.description = data.description

        new_type = data.type if data.type is not None else task.type
        if new_type != task.type:
            parent = state.tasks.get(task.parent_path) if task.parent_path else None
            if parent is not None:
                require_allowed(parent.type, new_type)
            for child in state.children_of(path):
                require_allowed(new_type, child.type)
            task.type = new_type

        if data.metadata is not None:
            meta_fields = data.metadata.model_fields_set
            for name in ("priority", "assignee", "reasoning"):
                if name in meta_fields:
                    setattr(task.metadata, name, getattr(data.metadata, name))
            if "tags" in meta_fields:
                task.metadata.tags = list(data.metadata.tags or [])
            if "notes" in meta_fields:
                task.metadata.notes = list(data.metadata.notes or [])

        deps_changed = "dependencies" in fields_set and data.dependencies is not None
        if deps_changed:
            deps = _normalize_dependencies(path, data.dependencies or [], state, self.limits)
            _check_cycles(state.graph, path, deps)
            task.dependencies = deps

        if data.status is not None and task.type == TaskType.MILESTONE:
            child_statuses = [c.status for c in state.children_of(path)]
            if not milestone_allows(data.status, child_statuses):
                if data.status == TaskStatus.COMPLETED:
                    reason = f"Milestone {path} cannot be completed until all of its subtasks are completed"
                else:
                    reason = f"Milestone {path} has all subtasks completed and must stay completed"
                raise InvalidStatus(path, data.status.value, reason)

        requested = data.status if data.status is not None else task.status
        incomplete = [d for d in task.dependencies if state.status_of(d) != TaskStatus.COMPLETED]
        child_statuses = (
            [c.status for c in state.children_of(path)] if task.type == TaskType.MILESTONE else []
        )
        outcome = settle_status(task.type, requested, task.retry_status, incomplete, child_statuses)
        task.status = outcome.status
        task.retry_status = outcome.retry_status
        task.bump_version()

        if deps_changed:
            state.graph.set_dependencies(path, task.dependencies)
        state.tasks[path] = task
        result = OperationResult(index, "update", path, task=task.clone())
        return _Step(result=result, saves=[task.clone()], seeds=[path])

    # -- delete -------------------------------------------------------------

    def _plan_delete(self, index: int, op: BulkOperation, state: _BatchState) -> _Step:
        path = _require_path(op, self.limits)
        target = state.tasks.get(path)
        if target is None:
            raise TaskNotFound(path)

        # Deepest first so no child ever outlives its parent.
        victims = sorted([path, *_descendants(path, state.tasks)], key=lambda p: (-depth_of(p), p))
        doomed = set(victims)

        survivors: dict[str, Task] = {}
        for victim in victims:
            for dependent in state.graph.dependents_of(victim):
                if dependent in doomed:
                    continue
                task = survivors.get(dependent) or state.tasks[dependent].clone()
                task.dependencies = [d for d in task.dependencies if d not in doomed]
                survivors[dependent] = task
        for task in survivors.values():
            task.bump_version()

        seeds = sorted(survivors)
        if target.parent_path and target.parent_path not in doomed:
            seeds.append(target.parent_path)

        for victim in victims:
            state.graph.remove_node(victim)
            del state.tasks[victim]
        for task in survivors.values():
            state.tasks[task.path] = task

        result = OperationResult(index, "delete", path, deleted=list(victims))
        return _Step(
            result=result,
            saves=[t.clone() for t in survivors.values()],
            deletes=list(victims),
            seeds=seeds,
        )


# ---------------------------------------------------------------------------
# Footprint
# ---------------------------------------------------------------------------

def _op_fields(raw: Any) -> tuple[Optional[str], Optional[str], dict[str, Any]]:
    if isinstance(raw, BulkOperation):
        return raw.type, raw.path, dict(raw.data)
    if isinstance(raw, dict):
        data = raw.get("data")
        return raw.get("type"), raw.get("path"), dict(data) if isinstance(data, dict) else {}
    return None, None, {}


def _dependency_list(data: dict[str, Any]) -> list[str]:
    deps = data.get("dependencies")
    if deps is None and isinstance(data.get("metadata"), dict):
        deps = data["metadata"].get("dependencies")
    if not isinstance(deps, (list, tuple)):
        return []
    return [d.strip() for d in deps if isinstance(d, str) and d.strip()]


def adds_dependency_edges(operations: Sequence[Any]) -> bool:
    """True when any operation sets a non-empty dependency list."""
    return any(_dependency_list(_op_fields(raw)[2]) for raw in operations)


def compute_footprint(operations: Sequence[Any], tasks: Iterable[Task]) -> set[str]:
    """Every path a batch may write, as far as it can be told before validation.

    Covers the operation paths and their ancestors, the descendants of
    created and deleted paths, referenced dependencies, and the dependents
    and parents a cascade may reach from all of those.  Malformed operations
    contribute what they can; validation reports them later.
    """
    index = {t.path: t for t in tasks}
    graph = DependencyGraph.from_tasks(index.values())
    seeds: set[str] = set()
    for raw in operations:
        op_type, path, data = _op_fields(raw)
        path = path or data.get("path")
        if not path and op_type == "create" and data.get("name"):
            parent = data.get("parent_path")
            try:
                path = derive_path(str(data["name"]), parent if isinstance(parent, str) else None)
            except TaskEngineError:
                path = parent if isinstance(parent, str) else None
        if isinstance(path, str) and path.strip():
            path = path.strip()
            seeds.add(path)
            seeds.update(ancestors_of(path))
            if op_type in ("create", "delete"):
                seeds.update(_descendants(path, index))
        parent = data.get("parent_path")
        if isinstance(parent, str) and parent.strip():
            seeds.add(parent.strip())
        seeds.update(_dependency_list(data))

    footprint: set[str] = set()
    stack = list(seeds)
    while stack:
        current = stack.pop()
        if current in footprint:
            continue
        footprint.add(current)
        stack.extend(graph.dependents_of(current))
        task = index.get(current)
        if task is not None and task.parent_path:
            stack.append(task.parent_path)
    return footprint
