"""
TaskGraph 测试 — 覆盖：
  1. 构图校验 (重复 ID、未知依赖、自依赖、环)
  2. 拓扑排序 (Kahn 算法，按 id 升序打破平局)
  3. 三色 DFS 环检测（包括直接构造、未经校验的环图与自环）
  4. 就绪查询 executable_nodes() 及其单调性
  5. 邻接查询与图指标

运行方式:
    pytest tests/test_task_graph.py -v
"""

from __future__ import annotations

import itertools

import pytest

from dag.errors import ConfigurationError, GraphCycleError
from dag.graph import TaskGraph
from dag.state_machine import Subtask
from schema import SubtaskDescriptor, TaskStatus


# ======================================================================
# Helpers
# ======================================================================


def _graph(deps: dict) -> TaskGraph:
    """Build a graph from {id: [dependency ids]}."""
    return TaskGraph.build(
        SubtaskDescriptor(id=nid, title=f"step {nid}", dependencies=list(d))
        for nid, d in deps.items()
    )


DIAMOND = {1: [], 2: [1], 3: [1], 4: [2, 3]}


def _assert_valid_order(graph: TaskGraph, order: list) -> None:
    assert sorted(order) == graph.ids(), "拓扑序必须是所有节点的一个排列"
    position = {nid: i for i, nid in enumerate(order)}
    for nid in order:
        for dep in graph.dependencies(nid):
            assert position[dep] < position[nid], f"{dep} 必须排在 {nid} 之前"


# ======================================================================
# Test 1: 构图校验
# ======================================================================


class TestBuildValidation:

    def test_builds_diamond(self):
        graph = _graph(DIAMOND)
        assert len(graph) == 4
        assert graph.edge_count == 4
        assert all(isinstance(n, Subtask) for n in graph)
        assert all(n.status == TaskStatus.PENDING for n in graph)

    def test_duplicate_id_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            TaskGraph.build([SubtaskDescriptor(id=1), SubtaskDescriptor(id=1)])

    def test_unknown_dependency_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown") as exc_info:
            _graph({1: [], 2: [7]})
        assert exc_info.value.node_id == 2

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(GraphCycleError) as exc_info:
            _graph({1: [], 2: [2]})
        assert exc_info.value.cycle_path == [2]

    def test_two_node_cycle_names_both_ids(self):
        """场景 2: {1:[2], 2:[1]} 构图失败并指出 1 和 2."""
        with pytest.raises(GraphCycleError) as exc_info:
            _graph({1: [2], 2: [1]})
        assert set(exc_info.value.cycle_path) == {1, 2}
        assert "1" in str(exc_info.value) and "2" in str(exc_info.value)

    def test_cycle_path_in_traversal_order(self):
        deps = {1: [], 2: [1, 4], 3: [2], 4: [3], 5: [4]}
        with pytest.raises(GraphCycleError) as exc_info:
            _graph(deps)
        path = exc_info.value.cycle_path
        assert path == [2, 3, 4]
        # each id is a dependency of the next one
        for a, b in zip(path, path[1:] + path[:1]):
            assert a in deps[b]

    def test_cycle_error_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            _graph({1: [3], 2: [1], 3: [2]})

    def test_mixed_id_types_rejected(self):
        with pytest.raises(ConfigurationError, match="one type"):
            TaskGraph.build([SubtaskDescriptor(id=1), SubtaskDescriptor(id="login")])

    def test_accepts_dicts_and_string_ids(self):
        graph = TaskGraph.build([
            {"id": "setup", "title": "Setup"},
            {"id": "login", "dependencies": ["setup"]},
            {"id": "verify", "dependencies": ["login"]},
        ])
        assert graph.topological_order() == ["setup", "login", "verify"]

    def test_invalid_dict_descriptor_rejected(self):
        with pytest.raises(ConfigurationError):
            TaskGraph.build([{"title": "no id"}])

    def test_empty_graph(self):
        graph = TaskGraph.build([])
        assert graph.topological_order() == []
        assert graph.executable_nodes(set()) == []
        assert graph.metrics().depth == 0


# ======================================================================
# Test 2: 拓扑排序
# ======================================================================


class TestTopologicalOrder:

    def test_diamond_starts_with_1_ends_with_4(self):
        """场景 1: 菱形依赖以 1 开始、以 4 结束."""
        order = _graph(DIAMOND).topological_order()
        assert order == [1, 2, 3, 4]

    def test_ties_broken_by_ascending_id(self):
        graph = _graph({5: [], 3: [], 9: [3], 1: [], 4: [5, 1]})
        assert graph.topological_order() == [1, 3, 5, 9, 4]

    def test_order_is_deterministic(self):
        deps = {i: [j for j in range(i) if (i * j) % 3 == 1] for i in range(12)}
        first = _graph(deps).topological_order()
        second = _graph(dict(reversed(list(deps.items())))).topological_order()
        assert first == second

    @pytest.mark.parametrize("deps", [
        DIAMOND,
        {1: [], 2: [], 3: []},
        {1: [], 2: [1], 3: [2], 4: [3], 5: [4]},
        {10: [], 20: [10], 30: [10], 40: [20], 50: [30, 40], 60: []},
        {i: [j for j in range(1, i) if i % j == 0] for i in range(1, 25)},
    ])
    def test_every_edge_respected(self, deps):
        graph = _graph(deps)
        _assert_valid_order(graph, graph.topological_order())

    def test_long_chain_does_not_recurse(self):
        n = 3000
        graph = _graph({i: ([i - 1] if i else []) for i in range(n)})
        assert graph.topological_order() == list(range(n))
        assert not graph.has_cycles()
        assert graph.depth() == n


# ======================================================================
# Test 3: 就绪查询
# ======================================================================


class TestExecutableNodes:

    def test_empty_completed_returns_roots(self):
        graph = _graph({1: [], 2: [1], 3: [], 4: [2, 3]})
        assert [n.id for n in graph.executable_nodes(set())] == [1, 3]

    def test_diamond_after_root(self):
        """场景 4: 菱形图中 1 完成后，就绪节点恰好是 {2, 3}."""
        graph = _graph(DIAMOND)
        assert {n.id for n in graph.executable_nodes({1})} == {2, 3}

    def test_completed_nodes_excluded(self):
        graph = _graph(DIAMOND)
        assert [n.id for n in graph.executable_nodes({1, 2, 3})] == [4]
        assert graph.executable_nodes({1, 2, 3, 4}) == []

    def test_monotonic(self):
        """completed ⊆ completed' ⇒ executable(completed) \\ completed' ⊆ executable(completed')."""
        graph = _graph({1: [], 2: [1], 3: [1], 4: [2, 3], 5: [], 6: [5, 2]})
        ids = graph.ids()
        subsets = [set(c) for r in range(len(ids) + 1) for c in itertools.combinations(ids, r)]
        for small in subsets:
            before = {n.id for n in graph.executable_nodes(small)}
            for big in subsets:
                if small <= big:
                    after = {n.id for n in graph.executable_nodes(big)}
                    assert before - big <= after, f"{small} -> {big}"

    def test_ignores_node_status(self):
        graph = _graph({1: [], 2: [1]})
        graph.node(1).mark_in_progress()
        assert [n.id for n in graph.executable_nodes(set())] == [1]

    def test_ready_waves(self):
        graph = _graph({1: [], 2: [1], 3: [1], 4: [2, 3], 5: []})
        assert graph.ready_waves() == [[1, 5], [2, 3], [4]]


# ======================================================================
# Test 4: 邻接查询与指标
# ======================================================================


class TestAdjacencyAndMetrics:

    def test_dependencies_and_dependents(self):
        graph = _graph(DIAMOND)
        assert graph.dependencies(4) == frozenset({2, 3})
        assert graph.dependents(1) == frozenset({2, 3})
        assert graph.dependents(4) == frozenset()

    def test_absent_id_gives_empty_set(self):
        graph = _graph(DIAMOND)
        assert graph.dependencies(99) == frozenset()
        assert graph.dependents(99) == frozenset()

    def test_has_cycles_false_after_build(self):
        assert not _graph(DIAMOND).has_cycles()
        assert _graph(DIAMOND).find_cycle() is None

    def test_nodes_map_is_a_copy(self):
        graph = _graph(DIAMOND)
        graph.nodes.pop(1)
        assert 1 in graph

    def test_build_copies_subtask_instances(self):
        started = Subtask(1, title="already running")
        started.mark_in_progress()
        graph = TaskGraph.build([started, Subtask(2, dependencies=[1])])

        node = graph.node(1)
        assert node is not started
        assert node.status == TaskStatus.PENDING
        assert node.title == "already running"
        assert started.status == TaskStatus.IN_PROGRESS


class TestCycleDetectionOnUnvalidatedGraph:
    """直接构造 TaskGraph（绕过 build() 校验）时，环检测仍须正确."""

    def _three_cycle(self) -> TaskGraph:
        nodes = {
            1: Subtask(1, dependencies=[3]),
            2: Subtask(2, dependencies=[1]),
            3: Subtask(3, dependencies=[2]),
        }
        return TaskGraph(
            nodes,
            forward={1: frozenset({2}), 2: frozenset({3}), 3: frozenset({1})},
            reverse={1: frozenset({3}), 2: frozenset({1}), 3: frozenset({2})},
        )

    def test_three_node_cycle_found(self):
        graph = self._three_cycle()
        assert graph.has_cycles() is True
        assert graph.find_cycle() == [1, 2, 3]

    def test_order_queries_raise_on_cycle(self):
        graph = self._three_cycle()
        with pytest.raises(GraphCycleError):
            graph.topological_order()
        with pytest.raises(GraphCycleError):
            graph.ready_waves()

    def test_self_loop(self):
        graph = TaskGraph(
            {1: Subtask(1, dependencies=[1]), 2: Subtask(2)},
            forward={1: frozenset({1}), 2: frozenset()},
            reverse={1: frozenset({1}), 2: frozenset()},
        )
        assert graph.has_cycles() is True
        assert graph.find_cycle() == [1]

    def test_cycle_behind_acyclic_prefix(self):
        # 0 -> 1 -> 2 -> 1: the cycle path starts where it closes
        graph = TaskGraph(
            {
                0: Subtask(0),
                1: Subtask(1, dependencies=[0, 2]),
                2: Subtask(2, dependencies=[1]),
            },
            forward={0: frozenset({1}), 1: frozenset({2}), 2: frozenset({1})},
            reverse={0: frozenset(), 1: frozenset({0, 2}), 2: frozenset({1})},
        )
        assert graph.find_cycle() == [1, 2]

    def test_metrics(self):
        metrics = _graph({1: [], 2: [1], 3: [1], 4: [2, 3], 5: []}).metrics()
        assert metrics.node_count == 5
        assert metrics.edge_count == 4
        assert metrics.root_count == 2
        assert metrics.leaf_count == 2
        assert metrics.depth == 3

    def test_descriptors_rebuild_fresh_graph(self):
        graph = _graph(DIAMOND)
        graph.node(1).mark_in_progress()
        rebuilt = TaskGraph.build(graph.descriptors())
        assert rebuilt.topological_order() == graph.topological_order()
        assert rebuilt.node(1).status == TaskStatus.PENDING

    def test_summary_and_to_dict(self):
        graph = _graph(DIAMOND)
        assert graph.summary() == "DAG[4 nodes: 4 pending]"
        data = graph.to_dict()
        assert [n["id"] for n in data["nodes"]] == [1, 2, 3, 4]
        assert [2, 4] in data["edges"] and [3, 4] in data["edges"]
