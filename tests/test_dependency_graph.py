"""Tests for the dependency graph: cycles, blocking and edits."""

from __future__ import annotations

import pytest

from atlas_tasks.errors import CyclicDependency
from atlas_tasks.task_engine.graph import DependencyGraph
from atlas_tasks.task_engine.model import Task, TaskStatus


def _lookup(statuses: dict[str, TaskStatus]):
    return statuses.get


@pytest.fixture
def chain() -> DependencyGraph:
    # a needs b, b needs c
    return DependencyGraph({"a": ["b"], "b": ["c"]})


class TestQueries:
    def test_dependencies_and_dependents(self, chain: DependencyGraph) -> None:
        assert chain.dependencies_of("a") == ["b"]
        assert chain.dependents_of("c") == ["b"]
        assert chain.dependents_of("a") == []

    def test_would_create_cycle(self, chain: DependencyGraph) -> None:
        assert chain.would_create_cycle("c", "a")
        assert chain.would_create_cycle("b", "a")
        assert not chain.would_create_cycle("a", "c")
        assert chain.would_create_cycle("a", "a")

    def test_incomplete_dependencies_are_direct(self, chain: DependencyGraph) -> None:
        status = _lookup({"a": TaskStatus.PENDING, "b": TaskStatus.COMPLETED, "c": TaskStatus.PENDING})
        assert chain.incomplete_dependencies("a", status) == set()
        assert not chain.is_blocked("a", status)
        assert chain.is_blocked("b", status)

    def test_transitively_incomplete(self, chain: DependencyGraph) -> None:
        status = _lookup({"b": TaskStatus.COMPLETED, "c": TaskStatus.PENDING})
        assert chain.transitively_incomplete("a", status) == {"c"}
        status = _lookup({"b": TaskStatus.FAILED, "c": TaskStatus.PENDING})
        assert chain.transitively_incomplete("a", status) == {"b", "c"}

    def test_missing_dependency_counts_as_incomplete(self) -> None:
        graph = DependencyGraph({"a": ["ghost"]})
        assert graph.incomplete_dependencies("a", _lookup({})) == {"ghost"}

    def test_from_tasks(self) -> None:
        graph = DependencyGraph.from_tasks([Task(path="x", dependencies=["y"]), Task(path="y")])
        assert graph.edges() == {"x": ["y"]}
        assert "y" in graph
        assert len(graph) == 2


class TestEdits:
    def test_add_edge(self, chain: DependencyGraph) -> None:
        chain.add_edge("a", "c")
        assert chain.dependencies_of("a") == ["b", "c"]
        assert chain.dependents_of("c") == ["a", "b"]

    def test_add_existing_edge_is_noop(self, chain: DependencyGraph) -> None:
        chain.add_edge("a", "b")
        assert chain.dependencies_of("a") == ["b"]

    def test_cycle_rejected_without_mutation(self, chain: DependencyGraph) -> None:
        before = chain.edges()
        with pytest.raises(CyclicDependency) as exc_info:
            chain.add_edge("c", "a")
        assert (exc_info.value.source, exc_info.value.target) == ("c", "a")
        assert chain.edges() == before

    def test_self_dependency_rejected(self, chain: DependencyGraph) -> None:
        with pytest.raises(CyclicDependency, match="itself"):
            chain.add_edge("a", "a")

    def test_remove_edge(self, chain: DependencyGraph) -> None:
        chain.remove_edge("a", "b")
        assert chain.dependencies_of("a") == []
        assert chain.dependents_of("b") == []

    def test_set_dependencies_replaces(self, chain: DependencyGraph) -> None:
        chain.set_dependencies("a", ["c", "c"])
        assert chain.dependencies_of("a") == ["c"]
        assert chain.dependents_of("b") == []
        assert chain.dependents_of("c") == ["a", "b"]

    def test_set_dependencies_all_or_nothing(self, chain: DependencyGraph) -> None:
        chain.add_edge("d", "a")
        before = chain.edges()
        with pytest.raises(CyclicDependency):
            chain.set_dependencies("c", ["e", "d"])
        assert chain.edges() == before
        assert chain.dependents_of("e") == []

    def test_remove_node(self, chain: DependencyGraph) -> None:
        dependents = chain.remove_node("b")
        assert dependents == ["a"]
        assert chain.dependencies_of("a") == []
        assert chain.dependents_of("c") == []
        assert "b" not in chain

    def test_copy_is_independent(self, chain: DependencyGraph) -> None:
        clone = chain.copy()
        clone.add_edge("c", "d")
        assert chain.dependencies_of("c") == []
