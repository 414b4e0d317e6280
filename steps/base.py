"""
Base Step Executor - Abstract interface for everything that runs a subtask.
BaseStepExecutor —— 所有执行 subtask 的执行器的抽象接口。

Each executor exposes:
  - name: the payload `kind` it is registered under in the StepRouter
  - execute(): run one subtask and return an ExecutionResult

每个执行器暴露：
  - name：在 StepRouter 中注册时使用的 payload `kind`
  - execute()：执行单个 subtask 并返回 ExecutionResult

Executors may raise; the Orchestrator turns exceptions into failed results.
执行器可以抛出异常；Orchestrator 会将其转换为失败结果。
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import config
from dag.state_machine import Subtask
from schema import ExecutionResult


class BaseStepExecutor(ABC):
    """
    Abstract base class for step executors.
    步骤执行器的抽象基类。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Payload kind handled by this executor. 该执行器处理的 payload 类型。"""

    @abstractmethod
    async def execute(self, node: Subtask) -> ExecutionResult:
        """Run the subtask and report the outcome. 执行 subtask 并返回结果。"""

    # ------------------------------------------------------------------
    # Helpers
    # 辅助方法
    # ------------------------------------------------------------------

    @staticmethod
    def truncate(text: str, limit: int | None = None) -> str:
        """Trim long output so results stay readable in reports. 截断过长输出。"""
        limit = limit or config.MAX_OUTPUT_CHARS
        if len(text) <= limit:
            return text
        return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"
