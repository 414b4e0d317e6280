"""
Subtask State Machine - Validates and enforces subtask lifecycle transitions.
Subtask 状态机 —— 校验并强制执行 subtask 生命周期的合法状态转移。

The transition table is the single source of truth for what state changes
are legal. Status and result are read-only from the outside; the only way to
change them is through the guarded mark_* methods, so an invalid transition
always raises InvalidTransitionError instead of silently corrupting a run.
转移表是合法状态变化的唯一权威来源。
状态与结果对外只读，唯一的修改途径是受保护的 mark_* 方法，
因此任何非法转移都会抛出 InvalidTransitionError，而不会悄悄破坏一次运行。

Transition graph:
转移图：
    PENDING ──> IN_PROGRESS ──> COMPLETED   (happy path / 正常路径)
                            ──> FAILED
    PENDING ──> BLOCKED ──> IN_PROGRESS     (retry, never done by the Orchestrator itself / 重试，Orchestrator 自身不会触发)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from typing import Any, Callable

from dag.errors import InvalidTransitionError
from schema import ExecutionResult, NodeId, NodeOutcome, SubtaskDescriptor, TaskStatus

logger = logging.getLogger(__name__)


# Full transition table.
# 完整的状态转移表。
VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING:     frozenset({TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.BLOCKED:     frozenset({TaskStatus.IN_PROGRESS}),
    # Terminal states: no further transitions
    # 终态：不允许任何进一步转移
    TaskStatus.COMPLETED:   frozenset(),
    TaskStatus.FAILED:      frozenset(),
}

TERMINAL_STATES: frozenset[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

TransitionCallback = Callable[[NodeId, TaskStatus, TaskStatus], None]


def allowed_transitions(status: TaskStatus) -> frozenset[TaskStatus]:
    """Return the set of legal next states for `status`."""
    return VALID_TRANSITIONS.get(status, frozenset())


def can_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    return to_status in allowed_transitions(from_status)


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATES


class Subtask:
    """
    One unit of work plus its lifecycle state.
    一个工作单元及其生命周期状态。

    Identity fields (id, title, dependencies, payload) are fixed at creation.
    `status` and `result` change only through:
      1. mark_in_progress()  — PENDING/BLOCKED -> IN_PROGRESS, starts the timer
      2. mark_completed()    — IN_PROGRESS -> COMPLETED
      3. mark_failed()       — IN_PROGRESS -> FAILED
      4. mark_blocked()      — PENDING -> BLOCKED

    标识字段（id、title、dependencies、payload）在创建时固定。
    `status` 与 `result` 只能通过以上四个方法修改。
    """

    def __init__(
        self,
        id: NodeId,
        title: str = "",
        dependencies: Iterable[NodeId] = (),
        payload: dict[str, Any] | None = None,
        on_transition: TransitionCallback | None = None,
    ):
        self._id = id
        self._title = title
        self._dependencies = frozenset(dependencies)
        self._payload = dict(payload or {})
        self._status = TaskStatus.PENDING
        self._result: ExecutionResult | None = None
        self._started_at: float | None = None  # time.monotonic() 起始时间，仅在 IN_PROGRESS 期间有效
        self._on_transition = on_transition

    @classmethod
    def from_descriptor(
        cls,
        descriptor: SubtaskDescriptor,
        on_transition: TransitionCallback | None = None,
    ) -> Subtask:
        return cls(
            id=descriptor.id,
            title=descriptor.title,
            dependencies=descriptor.dependencies,
            payload=descriptor.payload,
            on_transition=on_transition,
        )

    # ------------------------------------------------------------------
    # Read-only view
    # 只读属性
    # ------------------------------------------------------------------

    @property
    def id(self) -> NodeId:
        return self._id

    @property
    def title(self) -> str:
        return self._title

    @property
    def dependencies(self) -> frozenset[NodeId]:
        return self._dependencies

    @property
    def payload(self) -> dict[str, Any]:
        """A copy of the opaque payload; the scheduler never inspects it."""
        return dict(self._payload)

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def result(self) -> ExecutionResult | None:
        return self._result

    def is_pending(self) -> bool:
        return self._status == TaskStatus.PENDING

    def is_in_progress(self) -> bool:
        return self._status == TaskStatus.IN_PROGRESS

    def is_completed(self) -> bool:
        return self._status == TaskStatus.COMPLETED

    def is_failed(self) -> bool:
        return self._status == TaskStatus.FAILED

    def is_blocked(self) -> bool:
        return self._status == TaskStatus.BLOCKED

    def is_terminal(self) -> bool:
        return is_terminal(self._status)

    def set_transition_callback(self, callback: TransitionCallback | None) -> None:
        """Attach the observer notified after every successful transition (used for UI events)."""
        self._on_transition = callback

    # ------------------------------------------------------------------
    # Guarded transitions
    # 受保护的状态转移
    # ------------------------------------------------------------------

    def mark_in_progress(self) -> None:
        """Start executing: records the start time and clears any previous result."""
        self._transition(TaskStatus.IN_PROGRESS)
        self._started_at = time.monotonic()
        self._result = None

    def mark_completed(self, result: ExecutionResult | None = None) -> None:
        """
        Record a successful execution. Output and metadata of `result` are kept;
        success, duration and timestamp are stamped here.
        记录成功执行。保留 `result` 的输出与元数据；success、duration、timestamp 在此写入。
        """
        self._transition(TaskStatus.COMPLETED)
        base = result or ExecutionResult(success=True)
        self._result = base.model_copy(update={
            "success": True,
            "error": None,
            "duration": self._elapsed(),
            "timestamp": time.time(),
        })

    def mark_failed(self, error: str | BaseException, partial: ExecutionResult | None = None) -> None:
        """
        Record a failed execution. Fields of `partial` (output, metadata) are merged
        into the stored result; `error`, duration and timestamp always win.
        记录失败执行。`partial` 中的字段（输出、元数据）会合并进结果；
        `error`、duration、timestamp 始终以本方法计算值为准。
        """
        self._transition(TaskStatus.FAILED)
        base = partial or ExecutionResult(success=False)
        self._result = base.model_copy(update={
            "success": False,
            "error": _error_text(error),
            "duration": self._elapsed(),
            "timestamp": time.time(),
        })

    def mark_blocked(self, reason: str) -> None:
        """
        Mark as never executed because of unmet dependencies or cancellation.
        No timer is started; the synthetic result has zero duration.
        因依赖未满足或取消而未执行。不会启动计时器，合成结果的耗时为 0。
        """
        self._transition(TaskStatus.BLOCKED)
        self._started_at = None
        self._result = ExecutionResult(
            success=False,
            error=f"Blocked: {reason}",
            duration=0.0,
            timestamp=time.time(),
        )

    def _transition(self, new_status: TaskStatus) -> None:
        if not can_transition(self._status, new_status):
            raise InvalidTransitionError(
                self._status, new_status, allowed_transitions(self._status), node_id=self._id,
            )
        old_status = self._status
        self._status = new_status
        logger.debug("[SM] %s: %s -> %s", self._id, old_status.value, new_status.value)

        if self._on_transition:
            try:
                self._on_transition(self._id, old_status, new_status)
            except Exception:
                # UI observers must not break the lifecycle / UI 回调异常不能影响状态机
                logger.exception("[SM] transition callback failed for %s", self._id)

    def _elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, time.monotonic() - self._started_at)

    # ------------------------------------------------------------------
    # Export
    # 导出
    # ------------------------------------------------------------------

    def to_descriptor(self) -> SubtaskDescriptor:
        return SubtaskDescriptor(
            id=self._id,
            title=self._title,
            dependencies=sorted(self._dependencies),
            payload=dict(self._payload),
        )

    def outcome(self) -> NodeOutcome:
        return NodeOutcome(
            id=self._id,
            title=self._title,
            status=self._status,
            dependencies=sorted(self._dependencies),
            result=self._result,
        )

    def __repr__(self) -> str:
        return f"Subtask(id={self._id!r}, status={self._status.value})"


# Name used by the graph layer and reporters.
SubtaskNode = Subtask


def _error_text(error: str | BaseException) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        return f"{type(error).__name__}: {text}" if text else type(error).__name__
    return str(error)
