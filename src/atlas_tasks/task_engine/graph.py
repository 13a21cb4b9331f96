"""Dependency graph over task paths.

Edges point from a task to the tasks it requires (``src -> dst`` means *src*
needs *dst* completed first).  The graph is kept acyclic: every edit is
checked before it is applied, and a rejected edit leaves the graph untouched.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Iterable, Mapping, Optional

from ..errors import CyclicDependency
from .model import Task, TaskStatus

StatusLookup = Callable[[str], Optional[TaskStatus]]


class DependencyGraph:
    def __init__(self, edges: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._deps: dict[str, list[str]] = {}
        self._rdeps: dict[str, set[str]] = defaultdict(set)
        for src, dsts in (edges or {}).items():
            self._deps[src] = []
            for dst in dsts:
                if dst not in self._deps[src]:
                    self._deps[src].append(dst)
                    self._rdeps[dst].add(src)

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "DependencyGraph":
        return cls({t.path: t.dependencies for t in tasks})

    def copy(self) -> "DependencyGraph":
        return DependencyGraph(self._deps)

    # -- queries ------------------------------------------------------------

    def edges(self) -> dict[str, list[str]]:
        """Adjacency snapshot ``{path: [dependency, ...]}`` (non-empty entries only)."""
        return {src: list(dsts) for src, dsts in self._deps.items() if dsts}

    def dependencies_of(self, path: str) -> list[str]:
        return list(self._deps.get(path, []))

    def dependents_of(self, path: str) -> list[str]:
        return sorted(self._rdeps.get(path, ()))

    def would_create_cycle(self, src: str, dst: str) -> bool:
        """True if adding ``src -> dst`` closes a cycle.

        Depth-first search from *dst* along existing edges; reaching *src*
        means the new edge would complete a loop.
        """
        if src == dst:
            return True
        visited: set[str] = set()
        stack = [dst]
        while stack:
            current = stack.pop()
            if current == src:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self._deps.get(current, ()))
        return False

    def incomplete_dependencies(self, path: str, status_of: StatusLookup) -> set[str]:
        """Direct dependencies of *path* that are not completed."""
        return {d for d in self._deps.get(path, ()) if status_of(d) != TaskStatus.COMPLETED}

    def is_blocked(self, path: str, status_of: StatusLookup) -> bool:
        return bool(self.incomplete_dependencies(path, status_of))

    def transitively_incomplete(self, path: str, status_of: StatusLookup) -> set[str]:
        """Every task reachable through dependency edges that is not completed."""
        out: set[str] = set()
        visited: set[str] = {path}
        stack = list(self._deps.get(path, ()))
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            if status_of(current) != TaskStatus.COMPLETED:
                out.add(current)
            stack.extend(self._deps.get(current, ()))
        return out

    # -- mutations ----------------------------------------------------------

    def add_edge(self, src: str, dst: str) -> None:
        """Add ``src -> dst``. Raises :class:`CyclicDependency` without mutating."""
        if dst in self._deps.get(src, ()):
            return
        if self.would_create_cycle(src, dst):
            raise CyclicDependency(src, dst)
        self._deps.setdefault(src, []).append(dst)
        self._rdeps[dst].add(src)

    def remove_edge(self, src: str, dst: str) -> None:
        deps = self._deps.get(src)
        if deps and dst in deps:
            deps.remove(dst)
            self._rdeps[dst].discard(src)

    def set_dependencies(self, path: str, dependencies: Iterable[str]) -> None:
        """Replace the dependencies of *path*, all or nothing."""
        new = list(dict.fromkeys(dependencies))
        old = self._deps.get(path, [])
        # Outgoing edges of *path* never help reach *path* itself, so each
        # new edge can be checked against the current graph independently.
        for dst in new:
            if dst not in old and self.would_create_cycle(path, dst):
                raise CyclicDependency(path, dst)
        for dst in old:
            self._rdeps[dst].discard(path)
        self._deps[path] = new
        for dst in new:
            self._rdeps[dst].add(path)

    def remove_node(self, path: str) -> list[str]:
        """Drop *path* and every edge touching it; returns its former dependents."""
        for dst in self._deps.pop(path, []):
            self._rdeps[dst].discard(path)
        dependents = sorted(self._rdeps.pop(path, set()))
        for src in dependents:
            deps = self._deps.get(src)
            if deps and path in deps:
                deps.remove(path)
        return dependents

    def __contains__(self, path: object) -> bool:
        return path in self._deps

    def __len__(self) -> int:
        return len(self._deps)
