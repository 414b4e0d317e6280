"""
DAG module - Core engine for dependency-ordered subtask execution.
DAG 模块 —— 按依赖顺序执行 subtask 的核心引擎。

Components:
  - graph.py:         TaskGraph data structure and graph algorithms
  - state_machine.py: Subtask lifecycle state machine
  - orchestrator.py:  Sequential execution engine
  - loader.py:        YAML/JSON plan loading
  - errors.py:        Scheduler exceptions

模块组成：
  - graph.py:         TaskGraph 数据结构与图算法（拓扑排序、环检测、就绪查询）
  - state_machine.py: Subtask 生命周期状态机（强制合法状态转移）
  - orchestrator.py:  串行执行引擎
  - loader.py:        YAML/JSON 计划加载
  - errors.py:        调度器异常
"""

from dag.errors import (
    ConfigurationError,
    GraphCycleError,
    InvalidTransitionError,
    OrchestrationError,
    SchedulerError,
)
from dag.state_machine import Subtask, SubtaskNode, VALID_TRANSITIONS  # 子任务状态机
from dag.graph import TaskGraph                                         # 任务依赖图
from dag.orchestrator import Orchestrator, StepExecutor                 # 编排执行引擎
from dag.loader import load_plan, parse_plan                            # 计划加载

__all__ = [
    "ConfigurationError",
    "GraphCycleError",
    "InvalidTransitionError",
    "OrchestrationError",
    "SchedulerError",
    "Subtask",
    "SubtaskNode",
    "VALID_TRANSITIONS",
    "TaskGraph",
    "Orchestrator",
    "StepExecutor",
    "load_plan",
    "parse_plan",
]
