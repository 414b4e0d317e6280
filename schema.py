"""
Pydantic data models for the DAG test runner.
Defines the core data structures shared by the scheduler, step executors and reporters.
DAG 测试运行器的 Pydantic 数据模型。
定义了调度器、步骤执行器与报告器之间共享的核心数据结构。

The scheduler itself (TaskGraph / Subtask / Orchestrator) lives in `dag/`;
this module only holds the plain data that crosses component boundaries.
调度器本身（TaskGraph / Subtask / Orchestrator）位于 `dag/` 包中；
本模块只保存跨组件传递的纯数据。
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# Subtask identifiers: integers or strings, but one graph uses only one kind
# so that ids stay totally ordered.
# Subtask 标识：整数或字符串，但同一张图只能使用一种类型，以保证全序可比较。
NodeId = Union[int, str]


# ======================================================================
# Lifecycle
# 生命周期状态
# ======================================================================

class TaskStatus(str, Enum):
    """
    Subtask lifecycle states, enforced by the transition table in dag/state_machine.py.
    Subtask 生命周期状态，由 dag/state_machine.py 中的转移表强制管理。

    Transition graph:
    转移图：
        PENDING -> IN_PROGRESS -> COMPLETED
                               -> FAILED
        PENDING -> BLOCKED -> IN_PROGRESS   (externally triggered retry / 外部触发的重试)
    """
    PENDING = "pending"          # 等待执行
    IN_PROGRESS = "in_progress"  # 正在执行
    COMPLETED = "completed"      # 成功完成（终态）
    FAILED = "failed"            # 执行失败（终态）
    BLOCKED = "blocked"          # 依赖未满足或被取消，未执行


# ======================================================================
# Execution results
# 执行结果模型
# ======================================================================

class ExecutionResult(BaseModel):
    """
    Outcome of running one subtask.
    单个 subtask 的执行结果。

    `duration` is measured in seconds and `timestamp` is epoch seconds; both are
    stamped by the Subtask state machine when it records the result.
    `duration` 以秒为单位，`timestamp` 为 epoch 秒；两者都由 Subtask 状态机在记录结果时写入。
    """
    model_config = ConfigDict(frozen=True)

    success: bool                                                       # 是否执行成功
    output: str | None = None                                           # 输出文本
    error: str | None = None                                            # 失败原因
    duration: float | None = Field(default=None, ge=0.0)                # 执行耗时（秒）
    timestamp: float | None = None                                      # 结果记录时间
    metadata: dict[str, Any] = Field(default_factory=dict)              # 额外信息（命令数、截图路径等）

    @classmethod
    def ok(cls, output: str | None = None, **metadata: Any) -> ExecutionResult:
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def fail(cls, error: str, output: str | None = None, **metadata: Any) -> ExecutionResult:
        return cls(success=False, error=error, output=output, metadata=metadata)


# ======================================================================
# Descriptor supply
# 任务描述输入
# ======================================================================

class SubtaskDescriptor(BaseModel):
    """
    One work item as supplied by the plan parser: id, title, dependencies and an opaque payload.
    由计划解析层提供的单个工作项：id、标题、依赖列表以及不透明的 payload。
    """
    id: NodeId = Field(description="Unique subtask identifier")                              # 唯一 ID
    title: str = Field(default="", description="Human-readable description")                 # 描述（调度器不使用）
    dependencies: list[NodeId] = Field(default_factory=list, description="Prerequisite ids")  # 前置依赖 ID 列表
    payload: dict[str, Any] = Field(default_factory=dict, description="Opaque step data")    # 交给 StepExecutor 的数据


class RunPlan(BaseModel):
    """
    A named set of subtask descriptors, as loaded from a YAML/JSON plan file.
    一组带名称的 subtask 描述，通常从 YAML/JSON 计划文件加载。

    `setup` steps run in order before the graph; the first failure blocks every
    subtask. `teardown` steps always run afterwards, whatever happened before.
    Hook steps without an id are numbered "setup-1", "teardown-1", ...
    `setup` 步骤在图执行前按顺序运行，任一失败则所有 subtask 被阻塞；
    `teardown` 步骤无论之前结果如何都会在最后运行。未写 id 的钩子步骤自动编号。
    """
    name: str = Field(description="Test / plan name")                  # 测试名称
    description: str = ""                                             # 测试说明
    subtasks: list[SubtaskDescriptor] = Field(default_factory=list)   # 子任务列表
    setup: list[SubtaskDescriptor] = Field(default_factory=list)      # 前置步骤
    teardown: list[SubtaskDescriptor] = Field(default_factory=list)   # 收尾步骤（总会执行）

    @field_validator("setup", "teardown", mode="before")
    @classmethod
    def _number_hook_steps(cls, steps: Any, info: ValidationInfo) -> Any:
        if not isinstance(steps, list):
            return steps
        numbered = []
        for i, step in enumerate(steps, start=1):
            if isinstance(step, dict) and "id" not in step:
                step = {**step, "id": f"{info.field_name}-{i}"}
            numbered.append(step)
        return numbered


# ======================================================================
# Result bundle (consumed by reporters)
# 结果汇总（供报告器使用）
# ======================================================================

class NodeOutcome(BaseModel):
    """Final state of one subtask after a run. 一次运行结束后单个 subtask 的最终状态。"""
    id: NodeId
    title: str = ""
    status: TaskStatus
    dependencies: list[NodeId] = Field(default_factory=list)
    result: ExecutionResult | None = None


class GraphMetrics(BaseModel):
    """Structural metrics of the graph that was executed. 被执行的图的结构指标。"""
    node_count: int = 0
    edge_count: int = 0
    root_count: int = 0   # 无依赖的节点数
    leaf_count: int = 0   # 无下游的节点数
    depth: int = 0        # 最长依赖链上的节点数


class RunResult(BaseModel):
    """
    Aggregated outcome of one orchestrated run. The shape of `to_dict()` is the
    stable contract consumed by every reporter.

    一次编排运行的汇总结果。`to_dict()` 的结构是所有报告器依赖的稳定契约。
    """
    name: str = ""
    success: bool                                                   # 所有节点及钩子步骤均 COMPLETED 时为 True
    cancelled: bool = False                                         # 运行是否被取消
    setup_failed: bool = False                                      # setup 失败，图未执行
    started_at: float = Field(default_factory=time.time)
    finished_at: float = Field(default_factory=time.time)
    duration: float = Field(default=0.0, ge=0.0)
    passed: int = 0
    failed: int = 0
    blocked: int = 0
    outcomes: list[NodeOutcome] = Field(default_factory=list)       # 按执行顺序排列
    setup: list[NodeOutcome] = Field(default_factory=list)          # setup 步骤结果
    teardown: list[NodeOutcome] = Field(default_factory=list)       # teardown 步骤结果
    metrics: GraphMetrics = Field(default_factory=GraphMetrics)

    @property
    def total(self) -> int:
        """Number of graph subtasks; setup/teardown steps are not counted."""
        return len(self.outcomes)

    def outcome(self, node_id: NodeId) -> NodeOutcome:
        """Return the outcome for `node_id`; KeyError if it was not part of the run."""
        for item in self.outcomes:
            if item.id == node_id:
                return item
        raise KeyError(node_id)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
