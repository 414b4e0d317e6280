"""
TaskGraph - Directed Acyclic Graph of subtasks and their dependencies.
TaskGraph —— 由 subtask 及其依赖关系构成的有向无环图。

The TaskGraph holds:
  - nodes:   dict of Subtask keyed by id (each Subtask owns its lifecycle state)
  - forward: id -> ids that depend on it
  - reverse: id -> ids it depends on

TaskGraph 包含：
  - nodes:   以 id 为 key 的 Subtask 字典（每个 Subtask 自己管理生命周期状态）
  - forward: id -> 依赖它的节点 ID 集合
  - reverse: id -> 它所依赖的节点 ID 集合

The structure is validated once in build() and never changes afterwards:
duplicate ids, unknown or self dependencies and cycles are all rejected
before any graph object exists. To change dependencies, build a new graph.
图结构只在 build() 中校验一次，之后不再改变：
重复 ID、未知依赖、自依赖以及环都会在图对象产生之前被拒绝。若要修改依赖，请重新构图。

Key operations:
  - topological_order(): Kahn's algorithm, ties broken by ascending id
  - has_cycles():        three-colour DFS
  - executable_nodes():  nodes whose dependencies are all in a completed set

核心操作：
  - topological_order(): Kahn 算法，同层按 id 升序，保证可复现
  - has_cycles():        三色标记 DFS
  - executable_nodes():  依赖已全部包含在 completed 集合中的节点
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from dag.errors import ConfigurationError, GraphCycleError
from dag.state_machine import Subtask
from schema import GraphMetrics, NodeId, SubtaskDescriptor

logger = logging.getLogger(__name__)

# DFS colours / DFS 三色标记
_WHITE, _GRAY, _BLACK = 0, 1, 2


class TaskGraph:
    """
    Read-only dependency graph over a fixed set of subtasks.
    建立在固定 subtask 集合上的只读依赖图。

    Build it with `TaskGraph.build(descriptors)`; the constructor assumes its
    input has already been validated.
    请通过 `TaskGraph.build(descriptors)` 构建；构造函数假定输入已校验。
    """

    def __init__(
        self,
        nodes: dict[NodeId, Subtask],
        forward: dict[NodeId, frozenset[NodeId]],
        reverse: dict[NodeId, frozenset[NodeId]],
    ):
        self._nodes = nodes        # 所有节点，key 为节点 ID
        self._forward = forward    # 正向邻接：dep -> 依赖它的节点
        self._reverse = reverse    # 反向邻接：node -> 它的依赖
        self._edge_count = sum(len(deps) for deps in reverse.values())

    # ------------------------------------------------------------------
    # Construction
    # 构建与校验
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, subtasks: Iterable[SubtaskDescriptor | Subtask | Mapping[str, Any]]) -> TaskGraph:
        """
        Validate descriptors and build the graph.
        校验描述并构建图。

        Raises ConfigurationError for duplicate ids, mixed id types, self
        dependencies and unknown dependencies, and GraphCycleError (naming the
        cycle in traversal order) if the dependencies contain a cycle.
        """
        nodes: dict[NodeId, Subtask] = {}
        for item in subtasks:
            node = _to_subtask(item)
            if node.id in nodes:
                raise ConfigurationError(f"Duplicate subtask id: {node.id!r}", node_id=node.id)
            nodes[node.id] = node

        id_types = {type(nid) for nid in nodes}
        if len(id_types) > 1:
            names = sorted(t.__name__ for t in id_types)
            raise ConfigurationError(f"Subtask ids must all share one type, got: {names}")

        for node in nodes.values():
            if node.id in node.dependencies:
                # A self-dependency is the smallest possible cycle
                # 自依赖是最小的环
                raise GraphCycleError([node.id])
            for dep in node.dependencies:
                if dep not in nodes:
                    raise ConfigurationError(
                        f"Subtask {node.id!r} depends on unknown subtask {dep!r}", node_id=node.id,
                    )

        # One edge (dep -> node) per declared dependency
        # 每条声明的依赖对应一条边 (dep -> node)
        forward_sets: dict[NodeId, set[NodeId]] = {nid: set() for nid in nodes}
        for node in nodes.values():
            for dep in node.dependencies:
                forward_sets[dep].add(node.id)

        forward = {nid: frozenset(ids) for nid, ids in forward_sets.items()}
        reverse = {nid: node.dependencies for nid, node in nodes.items()}

        graph = cls(nodes, forward, reverse)
        cycle = graph.find_cycle()
        if cycle is not None:
            raise GraphCycleError(cycle)

        logger.info("[DAG] Built graph: %d nodes, %d edges", len(nodes), graph.edge_count)
        return graph

    # ------------------------------------------------------------------
    # Node queries
    # 节点查询
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> dict[NodeId, Subtask]:
        """A copy of the id -> Subtask map, so callers cannot add or remove nodes."""
        return dict(self._nodes)

    @property
    def edge_count(self) -> int:
        return self._edge_count

    def node(self, node_id: NodeId) -> Subtask:
        """Return the Subtask for `node_id`; KeyError if absent."""
        return self._nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes[nid] for nid in self.ids())

    def ids(self) -> list[NodeId]:
        """All node ids in ascending order."""
        return sorted(self._nodes)

    def dependencies(self, node_id: NodeId) -> frozenset[NodeId]:
        """Ids `node_id` depends on (reverse adjacency); empty if absent."""
        return self._reverse.get(node_id, frozenset())

    def dependents(self, node_id: NodeId) -> frozenset[NodeId]:
        """Ids that depend on `node_id` (forward adjacency); empty if absent."""
        return self._forward.get(node_id, frozenset())

    def roots(self) -> list[NodeId]:
        return [nid for nid in self.ids() if not self._reverse[nid]]

    def leaves(self) -> list[NodeId]:
        return [nid for nid in self.ids() if not self._forward[nid]]

    def executable_nodes(self, completed: Iterable[NodeId]) -> list[Subtask]:
        """
        Return nodes not in `completed` whose dependencies are all in `completed`.
        返回不在 `completed` 中、且全部依赖都已包含在 `completed` 中的节点。

        Independent of node status: this is the pure structural readiness query,
        used for inspection and for planning ready waves.
        与节点状态无关：这是纯结构层面的就绪查询，用于诊断和划分就绪波次。
        """
        done = set(completed)
        return [
            self._nodes[nid] for nid in self.ids()
            if nid not in done and self._reverse[nid] <= done
        ]

    def ready_waves(self) -> list[list[NodeId]]:
        """
        Partition the graph into waves: each wave only depends on earlier waves.
        将图划分为波次：每一波只依赖于之前的波次。
        """
        waves: list[list[NodeId]] = []
        done: set[NodeId] = set()
        while len(done) < len(self._nodes):
            wave = [n.id for n in self.executable_nodes(done)]
            if not wave:
                raise GraphCycleError(self.find_cycle() or sorted(set(self._nodes) - done))
            waves.append(wave)
            done.update(wave)
        return waves

    # ------------------------------------------------------------------
    # Graph algorithms
    # 图算法
    # ------------------------------------------------------------------

    def topological_order(self) -> list[NodeId]:
        """
        Kahn's algorithm — returns node ids in a valid, deterministic execution order.
        Kahn 算法 —— 返回合法且确定的节点执行顺序。

        Zero in-degree nodes are seeded in ascending id order and dependents are
        visited in ascending id order, so a fixed graph always yields the same order.
        入度为 0 的节点按 id 升序入队，下游节点也按 id 升序访问，因此同一张图总得到相同顺序。
        """
        in_degree = {nid: len(deps) for nid, deps in self._reverse.items()}
        queue = deque(nid for nid in self.ids() if in_degree[nid] == 0)
        result: list[NodeId] = []

        while queue:
            nid = queue.popleft()
            result.append(nid)
            for child in sorted(self._forward[nid]):
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    queue.append(child)

        if len(result) != len(self._nodes):
            # Validated at build time; reaching this is an internal error
            # 构图时已校验；到达这里说明内部状态被破坏
            remaining = sorted(set(self._nodes) - set(result))
            logger.error("[DAG] Cycle detected during topological sort: %s", remaining)
            raise GraphCycleError(self.find_cycle() or remaining)
        return result

    def has_cycles(self) -> bool:
        """Three-colour DFS: reaching a GRAY node again means a back edge. O(V+E)."""
        return self.find_cycle() is not None

    def find_cycle(self) -> list[NodeId] | None:
        """
        Return the ids of one cycle in traversal order (following dep -> dependent
        edges), or None if the graph is acyclic.
        返回一个环上的节点 ID（按 dep -> dependent 方向的遍历顺序），无环时返回 None。

        Iterative DFS so deep chains do not hit the recursion limit.
        使用迭代式 DFS，避免长依赖链触发递归深度限制。
        """
        color = {nid: _WHITE for nid in self._nodes}
        for start in self.ids():
            if color[start] != _WHITE:
                continue
            path: list[NodeId] = [start]
            stack = [iter(sorted(self._forward[start]))]
            color[start] = _GRAY
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if color[child] == _GRAY:
                    return path[path.index(child):]
                if color[child] == _WHITE:
                    color[child] = _GRAY
                    path.append(child)
                    stack.append(iter(sorted(self._forward[child])))
        return None

    def depth(self) -> int:
        """Number of nodes on the longest dependency chain (0 for an empty graph)."""
        level: dict[NodeId, int] = {}
        for nid in self.topological_order():
            level[nid] = 1 + max((level[d] for d in self._reverse[nid]), default=0)
        return max(level.values(), default=0)

    def metrics(self) -> GraphMetrics:
        return GraphMetrics(
            node_count=len(self._nodes),
            edge_count=self._edge_count,
            root_count=len(self.roots()),
            leaf_count=len(self.leaves()),
            depth=self.depth(),
        )

    # ------------------------------------------------------------------
    # Serialization / display
    # 序列化与展示
    # ------------------------------------------------------------------

    def descriptors(self) -> list[SubtaskDescriptor]:
        """Snapshot of the input descriptors; `TaskGraph.build(g.descriptors())` gives a fresh graph."""
        return [self._nodes[nid].to_descriptor() for nid in self.ids()]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [
                {
                    "id": nid,
                    "title": self._nodes[nid].title,
                    "status": self._nodes[nid].status.value,
                    "dependencies": sorted(self._reverse[nid]),
                }
                for nid in self.ids()
            ],
            "edges": [[dep, nid] for nid in self.ids() for dep in sorted(self._reverse[nid])],
        }

    def summary(self) -> str:
        """
        One-line summary for logging.
        生成单行状态摘要，用于日志输出，如：DAG[5 nodes: 2 completed, 1 failed, 2 pending]
        """
        status_counts: dict[str, int] = {}
        for n in self._nodes.values():
            status_counts[n.status.value] = status_counts.get(n.status.value, 0) + 1
        parts = [f"{v} {k}" for k, v in status_counts.items()]
        return f"DAG[{len(self._nodes)} nodes: {', '.join(parts)}]"


def _to_subtask(item: SubtaskDescriptor | Subtask | Mapping[str, Any]) -> Subtask:
    if isinstance(item, Subtask):
        # Fresh PENDING copy; the caller keeps its own instance and history
        # 复制为新的 PENDING 节点，调用方的实例及其状态不受影响
        return Subtask.from_descriptor(item.to_descriptor())
    if isinstance(item, SubtaskDescriptor):
        return Subtask.from_descriptor(item)
    if isinstance(item, Mapping):
        try:
            descriptor = SubtaskDescriptor.model_validate(dict(item))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid subtask descriptor {dict(item)!r}: {exc}") from exc
        return Subtask.from_descriptor(descriptor)
    raise ConfigurationError(f"Unsupported subtask descriptor: {item!r}")
