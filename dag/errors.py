"""
Scheduler errors.
调度器异常定义。

  - ConfigurationError:    bad subtask input, detected while building the graph (fatal for the run)
  - GraphCycleError:       the dependency set contains a cycle
  - InvalidTransitionError: illegal lifecycle transition (a bug in the caller)
  - OrchestrationError:    the run could not start or continue

  - ConfigurationError：     构图时发现的输入错误（对本次运行致命）
  - GraphCycleError：        依赖集合中存在环
  - InvalidTransitionError： 非法的生命周期转移（调用方代码缺陷）
  - OrchestrationError：     运行无法开始或继续
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class SchedulerError(Exception):
    """Base class for every error raised by the dag package."""


class ConfigurationError(SchedulerError):
    """
    Raised when subtask descriptors cannot form a valid graph
    (duplicate id, unknown dependency, self-dependency, mixed id types, cycle).
    当 subtask 描述无法构成合法图时抛出（重复 ID、未知依赖、自依赖、ID 类型混用、环）。
    """

    def __init__(self, message: str, node_id: Any = None) -> None:
        self.node_id = node_id
        super().__init__(message)


class GraphCycleError(ConfigurationError):
    """Raised when the dependency graph contains a cycle; `cycle_path` lists the ids in traversal order."""

    def __init__(self, cycle_path: Iterable[Any]) -> None:
        self.cycle_path = list(cycle_path)
        path = " -> ".join(str(n) for n in self.cycle_path)
        super().__init__(
            f"Dependency cycle detected: {path}",
            node_id=self.cycle_path[0] if self.cycle_path else None,
        )


class InvalidTransitionError(SchedulerError):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """

    def __init__(self, from_status: Any, to_status: Any, allowed: Iterable[Any], node_id: Any = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = frozenset(allowed)
        self.node_id = node_id
        allowed_names = sorted(_value(s) for s in self.allowed)
        prefix = f"Subtask '{node_id}': " if node_id is not None else ""
        super().__init__(
            f"{prefix}invalid transition {_value(from_status)} -> {_value(to_status)}. "
            f"Allowed: {allowed_names}"
        )


class OrchestrationError(SchedulerError):
    """Raised when a run cannot proceed; the underlying error is kept in `cause`."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


def _value(status: Any) -> str:
    return str(getattr(status, "value", status))
