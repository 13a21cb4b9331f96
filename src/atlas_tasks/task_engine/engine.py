"""Task engine: the single entry point for task manipulation.

It wraps a :class:`TaskStore` with the business rules (path validation,
containment, dependency cycles, status cascades).  Every mutation, single or
bulk, goes through the :class:`BulkOperationCoordinator` while holding the
per-path locks of the batch footprint.  Every operation returns a
:class:`TaskResponse` envelope; rejected operations raise.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Sequence

from loguru import logger

from ..config import EngineConfig, load_engine_config
from ..constants import MAX_LOCK_ATTEMPTS
from ..errors import BatchValidationFailed, InvalidInput, StoreError, TaskEngineError, TaskNotFound
from ..logging_utils import configure_logging, pretty, summarize_response
from .bulk import BatchResult, BulkOperationCoordinator, adds_dependency_edges, compute_footprint
from .cascade import CascadeEngine, children_index
from .graph import DependencyGraph
from .locks import PathLocks
from .model import Task, TaskStatus
from .paths import match_pattern, normalize_path, project_of
from .response import TaskResponse
from .status import describe_state_machine
from .store import TaskStore, create_store


class TaskEngine:
    """Manage the lifecycle of path-addressed tasks.

    Parameters
    ----------
    store:
        Persistence collaborator. Built from *config* when omitted.
    config:
        Engine configuration (path limits, storage selection).
    """

    def __init__(self, store: Optional[TaskStore] = None, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()
        self.store = store if store is not None else create_store(self.config)
        self.limits = self.config.path_limits
        self.coordinator = BulkOperationCoordinator(self.store, self.limits)
        self._locks = PathLocks()
        # Two edge additions on disjoint paths can still close a cycle together.
        self._graph_lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config_path: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        configure_logs: bool = False,
    ) -> "TaskEngine":
        config, err = load_engine_config(config_path, env)
        if configure_logs:
            configure_logging(config.log_level)
        if err:
            logger.warning("Engine configuration issues (defaults kept): {}", err)
        return cls(config=config)

    def __enter__(self) -> "TaskEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _boundary(self, operation: str, path: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except StoreError as exc:
            logger.error("{} failed for {}: {}", operation, path or "-", exc)
            raise
        except TaskEngineError as exc:
            logger.warning("{} rejected for {}: {}", operation, path or "-", exc)
            raise

    @contextmanager
    def _mutation_guard(self, operations: Sequence[Any]) -> Iterator[set[str]]:
        """Hold the locks of every path the batch may write.

        The footprint is recomputed once the locks are held; if a concurrent
        batch widened it in the meantime the locks are released and the
        acquisition retried.
        """
        graph_guard = self._graph_lock if adds_dependency_edges(operations) else nullcontext()
        with graph_guard:
            for attempt in range(1, MAX_LOCK_ATTEMPTS + 1):
                footprint = compute_footprint(operations, self.store.list_all())
                with self._locks.hold(footprint):
                    current = compute_footprint(operations, self.store.list_all())
                    if current <= footprint or attempt == MAX_LOCK_ATTEMPTS:
                        yield footprint
                        return
                logger.debug("Lock footprint grew from {} to {} path(s); retrying", len(footprint), len(current))

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Lock every existing path, for whole-store operations."""
        with self._graph_lock:
            with self._locks.hold(t.path for t in self.store.list_all()):
                yield

    def _run_batch(self, operations: Sequence[Any]) -> BatchResult:
        with self._mutation_guard(operations):
            return self.coordinator.apply(operations)

    def _run_single(self, operation: dict[str, Any]) -> BatchResult:
        try:
            return self._run_batch([operation])
        except BatchValidationFailed as exc:
            if len(exc.failures) == 1:
                raise exc.failures[0].error from None
            raise

    def _path(self, raw: Optional[str]) -> str:
        return normalize_path(raw, self.limits)

    def _require(self, path: str) -> Task:
        task = self.store.get(path)
        if task is None:
            raise TaskNotFound(path)
        return task

    def _hydrate(self, task: Task) -> Task:
        task.subtasks = [c.path for c in self.store.list_children(task.path)]
        return task

    def _hydrate_many(self, tasks: list[Task]) -> list[Task]:
        if not tasks:
            return tasks
        index = children_index(self.store.list_all())
        for task in tasks:
            task.subtasks = list(index.get(task.path, ()))
        return tasks

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_task(self, data: Mapping[str, Any], path: Optional[str] = None) -> TaskResponse:
        """Create one task. ``path`` may also come from ``data`` or be derived from the name."""
        with self._boundary("create_task", path or data.get("path")):
            batch = self._run_single({"type": "create", "path": path, "data": dict(data)})
            result = batch.results[0]
            task = self._hydrate(result.task.clone())
            logger.info("Created task {} ({})", task.path, task.type.value)
            return TaskResponse.ok(task, affected_paths=batch.affected_paths, project_path=task.project_path)

    def update_task(self, path: str, updates: Mapping[str, Any]) -> TaskResponse:
        with self._boundary("update_task", path):
            batch = self._run_single({"type": "update", "path": path, "data": dict(updates)})
            result = batch.results[0]
            task = self._hydrate(result.task.clone())
            logger.info("Updated task {} -> {} (v{})", task.path, task.status.value, task.version)
            return TaskResponse.ok(task, affected_paths=batch.affected_paths, project_path=task.project_path)

    def delete_task(self, path: str) -> TaskResponse:
        """Delete *path* and every task below it."""
        with self._boundary("delete_task", path):
            batch = self._run_single({"type": "delete", "path": path})
            deleted = batch.results[0].deleted
            logger.info("Deleted {} task(s) under {}", len(deleted), batch.results[0].path)
            return TaskResponse.ok({"deleted": deleted}, affected_paths=batch.affected_paths)

    def bulk(self, operations: Sequence[Any]) -> TaskResponse:
        """Apply ``[{type, path, data}, ...]`` atomically.

        Raises:
            BatchValidationFailed: listing every failing operation; nothing
                was written.
        """
        with self._boundary("bulk"):
            if isinstance(operations, (str, bytes)) or not isinstance(operations, Sequence):
                raise InvalidInput("operations must be a list")
            batch = self._run_batch(list(operations))
            logger.info("Bulk applied {} operation(s)", len(batch.results))
            response = TaskResponse.ok(batch, affected_paths=batch.affected_paths)
            logger.debug("Bulk response:\n{}", pretty(summarize_response(response)))
            return response

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, path: str) -> TaskResponse:
        with self._boundary("get_task", path):
            task = self._hydrate(self._require(self._path(path)))
            return TaskResponse.ok(task, project_path=task.project_path)

    def list_tasks(self, pattern: str) -> TaskResponse:
        """Tasks whose path matches the glob *pattern* (``*`` stays within a segment)."""
        with self._boundary("list_tasks", pattern):
            if not isinstance(pattern, str) or not pattern.strip():
                raise InvalidInput("pattern must be a non-empty string")
            tasks = self._hydrate_many(self.store.list_by_pattern(pattern.strip()))
            return TaskResponse.ok(tasks)

    def get_tasks_by_status(self, status: Any, pattern: Optional[str] = None) -> TaskResponse:
        with self._boundary("get_tasks_by_status"):
            try:
                wanted = TaskStatus(status)
            except ValueError:
                raise InvalidInput(
                    f"Unknown status '{status}'",
                    [f"status must be one of {[s.value for s in TaskStatus]}"],
                ) from None
            tasks = self.store.list_by_status(wanted)
            if pattern:
                tasks = [t for t in tasks if match_pattern(pattern.strip(), t.path)]
            return TaskResponse.ok(self._hydrate_many(tasks))

    def get_subtasks(self, path: str) -> TaskResponse:
        with self._boundary("get_subtasks", path):
            parent = self._require(self._path(path))
            children = self._hydrate_many(self.store.list_children(parent.path))
            return TaskResponse.ok(children, project_path=parent.project_path)

    def get_progress(self, path: str) -> TaskResponse:
        """Child status counts, completion ratio and the derived ``all_children_complete`` flag."""
        with self._boundary("get_progress", path):
            task = self._require(self._path(path))
            children = self.store.list_children(task.path)
            counts = {s.value: 0 for s in TaskStatus}
            for child in children:
                counts[child.status.value] += 1
            total = len(children)
            done = counts[TaskStatus.COMPLETED.value]
            progress = {
                "path": task.path,
                "type": task.type.value,
                "status": task.status.value,
                "total": total,
                "completed": done,
                "counts": counts,
                "percent": round(100.0 * done / total, 1) if total else (100.0 if task.is_completed else 0.0),
                "all_children_complete": bool(total) and done == total,
            }
            return TaskResponse.ok(progress, project_path=task.project_path)

    def get_dependency_graph(self, path: Optional[str] = None) -> TaskResponse:
        """Adjacency ``{path: [dependency, ...]}``, whole store or the component of *path*."""
        with self._boundary("get_dependency_graph", path):
            tasks = {t.path: t for t in self.store.list_all()}
            graph = DependencyGraph.from_tasks(tasks.values())
            if path is None:
                nodes = sorted(tasks)
            else:
                root = self._path(path)
                if root not in tasks:
                    raise TaskNotFound(root)
                seen: set[str] = set()
                stack = [root]
                while stack:
                    current = stack.pop()
                    if current in seen:
                        continue
                    seen.add(current)
                    stack.extend(graph.dependencies_of(current))
                    stack.extend(graph.dependents_of(current))
                nodes = sorted(seen)

            def status_of(p: str) -> Optional[TaskStatus]:
                task = tasks.get(p)
                return task.status if task else None

            data = {
                "nodes": nodes,
                "edges": {p: graph.dependencies_of(p) for p in nodes if graph.dependencies_of(p)},
                "blocked": [p for p in nodes if graph.is_blocked(p, status_of)],
            }
            return TaskResponse.ok(data, project_path=None if path is None else project_of(root))

    def get_blockers(self, path: str) -> TaskResponse:
        """Every transitively reachable dependency of *path* that is not completed."""
        with self._boundary("get_blockers", path):
            target = self._require(self._path(path))
            tasks = {t.path: t for t in self.store.list_all()}
            graph = DependencyGraph.from_tasks(tasks.values())

            def status_of(p: str) -> Optional[TaskStatus]:
                task = tasks.get(p)
                return task.status if task else None

            data = {
                "path": target.path,
                "direct": sorted(graph.incomplete_dependencies(target.path, status_of)),
                "blockers": sorted(graph.transitively_incomplete(target.path, status_of)),
            }
            return TaskResponse.ok(data, project_path=target.project_path)

    def describe_state_machine(self) -> dict[str, Any]:
        return describe_state_machine()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def repair_relationships(self, dry_run: bool = False, pattern: Optional[str] = None) -> TaskResponse:
        """Find (and unless *dry_run*, fix) broken links and stale blocks.

        * a ``parent_path`` naming a missing task is cleared,
        * dependencies naming missing tasks are dropped,
        * ``blocked`` tasks without incomplete dependencies are re-resolved.
        """
        with self._boundary("repair_relationships", pattern), self._exclusive():
            all_tasks = {t.path: t for t in self.store.list_all()}
            scope = [t for p, t in sorted(all_tasks.items()) if not pattern or match_pattern(pattern, p)]
            issues: list[str] = []
            repaired: list[Task] = []
            stale_blocks: list[str] = []
            for task in scope:
                dirty = False
                if task.parent_path and task.parent_path not in all_tasks:
                    issues.append(f"{task.path}: parent {task.parent_path} does not exist")
                    task.parent_path = None
                    dirty = True
                missing = [d for d in task.dependencies if d not in all_tasks]
                if missing:
                    issues.append(f"{task.path}: missing dependencies {', '.join(missing)}")
                    task.dependencies = [d for d in task.dependencies if d in all_tasks]
                    dirty = True
                if task.status == TaskStatus.BLOCKED and not any(
                    all_tasks[d].status != TaskStatus.COMPLETED for d in task.dependencies
                ):
                    issues.append(f"{task.path}: blocked without incomplete dependencies")
                    stale_blocks.append(task.path)
                if dirty:
                    repaired.append(task)

            fixed: list[str] = []
            if not dry_run and (repaired or stale_blocks):
                with self.store.transaction():
                    for task in repaired:
                        task.bump_version()
                        self.store.save(task)
                    changed = CascadeEngine(self.store).run(
                        [t.path for t in repaired] + stale_blocks,
                        saved=[t.path for t in repaired],
                    )
                fixed = list(dict.fromkeys([t.path for t in repaired] + changed))
                logger.info("Repaired {} task(s); {} issue(s) found", len(fixed), len(issues))
            response = TaskResponse.ok({"fixed": fixed, "issues": issues, "dry_run": dry_run}, affected_paths=fixed)
            logger.debug("Repair response:\n{}", pretty(summarize_response(response)))
            return response

    def clear_all_tasks(self, confirm: bool = False) -> TaskResponse:
        with self._boundary("clear_all_tasks"):
            if confirm is not True:
                raise InvalidInput("Must explicitly confirm clearing all tasks")
            with self._exclusive():
                removed = [t.path for t in self.store.list_all()]
                count = self.store.clear_all()
            logger.warning("Cleared {} task(s)", count)
            return TaskResponse.ok({"removed": count}, affected_paths=removed)

    def vacuum_database(self, analyze: bool = True) -> TaskResponse:
        with self._boundary("vacuum_database"):
            self.store.vacuum()
            if analyze:
                self.store.analyze()
            self.store.checkpoint()
            return TaskResponse.ok({"vacuumed": True, "analyzed": analyze})

    def close(self) -> None:
        self.store.close()

