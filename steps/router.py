"""
Step Router - Dispatches each subtask to the executor registered for its payload kind.
步骤路由器 —— 按 payload 的 kind 将 subtask 分派给对应的执行器。

The router itself is a StepExecutor, so the Orchestrator only ever sees one
executor no matter how many kinds of step a plan mixes.
路由器本身就是一个 StepExecutor，因此无论计划中混合了多少种步骤，
Orchestrator 只需面对一个执行器。

It also keeps per-kind usage statistics for the end-of-run summary.
同时记录每种步骤的使用统计，用于运行结束后的汇总。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dag.state_machine import Subtask
from schema import ExecutionResult
from steps.base import BaseStepExecutor

logger = logging.getLogger(__name__)


@dataclass
class KindStats:
    """Per-kind usage statistics. 每种步骤的使用统计。"""
    calls: int = 0      # 总调用次数
    failures: int = 0   # 失败次数（含异常）

    @property
    def success_rate(self) -> float:
        return (self.calls - self.failures) / self.calls if self.calls > 0 else 1.0


class StepRouter(BaseStepExecutor):
    """
    Route subtasks by `payload["kind"]`; unknown kinds yield a failed result.
    根据 `payload["kind"]` 路由 subtask；未知类型返回失败结果。
    """

    def __init__(self, executors: list[BaseStepExecutor], default_kind: str | None = None):
        self._executors: dict[str, BaseStepExecutor] = {}
        for executor in executors:
            self.register(executor)
        self._default_kind = default_kind
        self._stats: dict[str, KindStats] = {}

    @property
    def name(self) -> str:
        return "router"

    @property
    def kinds(self) -> list[str]:
        return sorted(self._executors)

    def register(self, executor: BaseStepExecutor) -> None:
        if executor.name in self._executors:
            logger.warning("[Router] Replacing executor for kind %r", executor.name)
        self._executors[executor.name] = executor

    async def execute(self, node: Subtask) -> ExecutionResult:
        kind = node.payload.get("kind", self._default_kind)
        executor = self._executors.get(kind) if kind else None
        if executor is None:
            return ExecutionResult.fail(
                f"No step executor for kind {kind!r} (available: {self.kinds})", kind=kind,
            )

        stats = self._stats.setdefault(kind, KindStats())
        stats.calls += 1
        try:
            result = await executor.execute(node)
        except Exception:
            stats.failures += 1
            raise
        if not result.success:
            stats.failures += 1
        logger.debug("[Router] %s/%s: success=%s (%d calls, %d failures)",
                     node.id, kind, result.success, stats.calls, stats.failures)
        return result

    def get_stats(self) -> dict[str, KindStats]:
        return dict(self._stats)
