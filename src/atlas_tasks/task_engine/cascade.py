"""Status propagation after a mutation batch.

The cascade reloads every task, rebuilds the dependency and containment
adjacency in memory, and re-resolves tasks through the status machine until
nothing changes:

* each seed is re-resolved itself,
* every task depending on a changed task is re-resolved,
* a MILESTONE parent of a changed task is re-resolved against its children.

Each task that changed is written once.  Its version is bumped unless the
calling batch already saved it, so one operation never advances a version
twice.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Iterable, Optional

from loguru import logger

from .graph import DependencyGraph
from .model import Task, TaskStatus, TaskType
from .status import Resolution, settle_status
from .store import TaskStore


def children_index(tasks: Iterable[Task]) -> dict[str, list[str]]:
    """``{parent_path: [child paths]}`` from the ``parent_path`` links."""
    out: dict[str, list[str]] = defaultdict(list)
    for task in tasks:
        if task.parent_path:
            out[task.parent_path].append(task.path)
    for paths in out.values():
        paths.sort()
    return out


class CascadeEngine:
    def __init__(self, store: TaskStore) -> None:
        self.store = store

    def run(
        self,
        seeds: Iterable[str],
        *,
        saved: Iterable[str] = (),
        max_steps: Optional[int] = None,
    ) -> list[str]:
        """Propagate from *seeds* to a fixed point and persist the changes.

        Each existing seed is queued with its dependents and its parent.
        Seeds naming deleted paths are skipped, so callers pass the former
        parents and dependents of deleted tasks as seeds too.  Paths in
        *saved* were already written and versioned by the caller; a change to
        them is persisted without another version bump.

        Returns:
            Changed paths in the order they first changed.
        """
        tasks = {t.path: t for t in self.store.list_all()}
        graph = DependencyGraph.from_tasks(tasks.values())
        children = children_index(tasks.values())

        def status_of(path: str) -> Optional[TaskStatus]:
            task = tasks.get(path)
            return task.status if task else None

        def resolve(task: Task) -> Resolution:
            incomplete = graph.incomplete_dependencies(task.path, status_of)
            child_statuses = (
                [tasks[c].status for c in children.get(task.path, ())]
                if task.type == TaskType.MILESTONE
                else ()
            )
            return settle_status(task.type, task.status, task.retry_status, incomplete, child_statuses)

        queue: deque[str] = deque()
        for seed in dict.fromkeys(seeds):
            task = tasks.get(seed)
            if task is None:
                continue
            queue.append(seed)
            queue.extend(graph.dependents_of(seed))
            if task.parent_path and task.parent_path in tasks:
                queue.append(task.parent_path)

        changed: dict[str, None] = {}
        limit = max_steps if max_steps is not None else max(64, 8 * (len(tasks) + 1) ** 2)
        steps = 0
        while queue:
            steps += 1
            if steps > limit:
                raise RuntimeError(f"Status cascade did not converge after {limit} steps")
            path = queue.popleft()
            task = tasks.get(path)
            if task is None:
                continue
            outcome = resolve(task)
            if outcome.status == task.status and outcome.retry_status == task.retry_status:
                continue
            logger.debug(
                "Cascade {}: {} -> {} (retry={})",
                path,
                task.status.value,
                outcome.status.value,
                outcome.retry_status.value if outcome.retry_status else None,
            )
            task.status = outcome.status
            task.retry_status = outcome.retry_status
            changed[path] = None
            queue.extend(graph.dependents_of(path))
            if task.parent_path and task.parent_path in tasks:
                queue.append(task.parent_path)

        already_saved = set(saved)
        for path in changed:
            task = tasks[path]
            if path in already_saved:
                task.touch()
            else:
                task.bump_version()
            self.store.save(task)
        return list(changed)
