"""
Orchestrator - Executes a TaskGraph sequentially in topological order.
编排器 —— 按拓扑顺序串行执行 TaskGraph。

The loop is deliberately simple:
执行循环刻意保持简单：

  1. Ask the graph for its topological order (a cycle here is fatal)
  2. Run the setup steps in order; the first failure blocks every subtask
  3. For each id in that order:
       - a dependency that did not complete -> mark BLOCKED, skip
       - cancellation requested             -> mark this and every later node BLOCKED
       - otherwise mark IN_PROGRESS, await the StepExecutor, then
         mark COMPLETED (and remember the id) or FAILED
  4. Run every teardown step, whatever happened before
  5. Aggregate every node's final state into a RunResult

  1. 向图请求拓扑顺序（此处出现环即为致命错误）
  2. 依次运行 setup 步骤；任一失败则所有 subtask 被标记 BLOCKED
  3. 依次处理每个 id：
       - 有依赖未完成     -> 标记 BLOCKED 并跳过
       - 收到取消请求     -> 将当前及之后的所有节点标记 BLOCKED
       - 否则标记 IN_PROGRESS，等待 StepExecutor 返回，
         再标记 COMPLETED（并记录 id）或 FAILED
  4. 无论之前结果如何，运行全部 teardown 步骤
  5. 将所有节点的最终状态汇总为 RunResult

A failure never aborts the run. Its dependents find an unmet dependency when
their turn comes and become BLOCKED, which cascades down the walk on its own;
independent branches keep running. A failing `on_event` observer is logged and
ignored, so the UI can never leave a node stuck IN_PROGRESS.
单个失败不会中止运行。其下游节点轮到执行时会发现依赖未满足而变为 BLOCKED，
这种级联沿拓扑遍历自然发生；互不相关的分支照常执行。
`on_event` 回调抛出的异常只记录日志，不会让节点停留在 IN_PROGRESS。
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any, Awaitable, Callable, Protocol, Union

from pydantic import ValidationError

from dag.errors import GraphCycleError, OrchestrationError
from dag.graph import TaskGraph
from dag.state_machine import Subtask
from schema import ExecutionResult, NodeId, RunResult, SubtaskDescriptor, TaskStatus

logger = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"
SETUP_FAILED_REASON = "setup failed"

EventCallback = Callable[[str, Any], None]
HookStep = Union[SubtaskDescriptor, Subtask, Mapping[str, Any]]


class StepExecutor(Protocol):
    """
    Anything that can run one subtask. `execute` may be sync or async and may raise;
    the Orchestrator converts exceptions into failed results.
    任何能执行单个 subtask 的对象。`execute` 可以是同步或异步，可以抛出异常；
    Orchestrator 会把异常转换为失败结果。
    """

    def execute(self, node: Subtask) -> Union[ExecutionResult, Awaitable[ExecutionResult]]:
        ...


class Orchestrator:
    """
    Drives one TaskGraph to completion with an injected StepExecutor.
    使用注入的 StepExecutor 将一张 TaskGraph 执行到结束。

    Events emitted through `on_event(name, data)`:
      run_started, node_transition, node_running, node_completed,
      node_failed, node_blocked, run_cancelled, run_finished
    Node events carry `phase` ("setup", "run" or "teardown").
    通过 `on_event(name, data)` 发出的事件见上，用于控制台实时展示；
    节点事件带有 `phase` 字段。
    """

    def __init__(
        self,
        step_executor: StepExecutor,
        on_event: EventCallback | None = None,
        is_cancelled: Callable[[], bool] | None = None,
    ):
        self._step_executor = step_executor
        self._on_event = on_event                             # 事件回调（用于 UI 实时更新）
        self._is_cancelled = is_cancelled or (lambda: False)  # 取消检查，在每个节点开始前调用

    # ------------------------------------------------------------------
    # Main execution loop
    # 主执行循环
    # ------------------------------------------------------------------

    async def run(
        self,
        graph: TaskGraph,
        name: str = "",
        setup: Iterable[HookStep] = (),
        teardown: Iterable[HookStep] = (),
    ) -> RunResult:
        """
        Execute every node of `graph` and return the aggregated result.
        执行 `graph` 中的所有节点并返回汇总结果。

        `setup` steps run first, in order; if one fails the rest of setup and
        every graph node become BLOCKED ("setup failed"). `teardown` steps run
        last, all of them, even after failures or cancellation.

        Raises OrchestrationError if no execution order exists, the graph has
        already been run (its subtasks are not all PENDING) or a hook step is
        invalid. Nothing executes in any of these cases.
        """
        try:
            order = graph.topological_order()
        except GraphCycleError as exc:
            raise OrchestrationError(f"Cannot schedule graph: {exc}", cause=exc) from exc

        not_pending = [nid for nid in order if not graph.node(nid).is_pending()]
        if not_pending:
            raise OrchestrationError(
                f"Graph has already been executed; subtasks not pending: {not_pending}. "
                f"Build a new graph from graph.descriptors() to run again."
            )

        setup_steps = self._hook_steps(setup, "setup")
        teardown_steps = self._hook_steps(teardown, "teardown")

        for nid in order:
            graph.node(nid).set_transition_callback(self._on_node_transition)

        started_at = time.time()
        clock = time.monotonic()
        cancelled = False
        self._emit("run_started", {
            "name": name, "order": order, "graph": graph,
            "setup": [s.id for s in setup_steps], "teardown": [s.id for s in teardown_steps],
        })
        logger.info(
            "[Orchestrator] Starting run %r: %d subtasks, %d setup, %d teardown",
            name, len(order), len(setup_steps), len(teardown_steps),
        )

        setup_ok = await self._run_setup(setup_steps)
        if setup_ok:
            cancelled = await self._walk(graph, order)
        else:
            logger.warning("[Orchestrator] Setup failed; blocking all %d subtasks", len(order))
            for nid in order:
                node = graph.node(nid)
                node.mark_blocked(SETUP_FAILED_REASON)
                self._emit("node_blocked", {"node": node, "unmet": [], "phase": "run"})

        for step in teardown_steps:
            await self._run_step(step, "teardown")

        run_result = self._aggregate(
            graph, order, name, started_at, time.monotonic() - clock, cancelled,
            setup_steps, teardown_steps,
        )
        self._emit("run_finished", run_result)
        logger.info(
            "[Orchestrator] Run %r finished: success=%s passed=%d failed=%d blocked=%d. %s",
            name, run_result.success, run_result.passed, run_result.failed,
            run_result.blocked, graph.summary(),
        )
        return run_result

    async def _walk(self, graph: TaskGraph, order: list[NodeId]) -> bool:
        """Run the graph nodes in `order`; returns True if the run was cancelled."""
        completed: set[NodeId] = set()
        for index, nid in enumerate(order):
            node = graph.node(nid)

            unmet = sorted(d for d in node.dependencies if d not in completed)
            if unmet:
                node.mark_blocked(f"unmet dependencies: {unmet}")
                self._emit("node_blocked", {"node": node, "unmet": unmet, "phase": "run"})
                logger.info("[Orchestrator] %s BLOCKED (unmet dependencies: %s)", nid, unmet)
                continue

            if self._is_cancelled():
                self._cancel_remaining(graph, order[index:])
                return True

            if await self._run_step(node, "run"):
                completed.add(nid)
        return False

    async def _run_setup(self, steps: list[Subtask]) -> bool:
        """Run setup steps in order; after the first failure the rest are blocked."""
        for index, step in enumerate(steps):
            if not await self._run_step(step, "setup"):
                for skipped in steps[index + 1:]:
                    skipped.mark_blocked(SETUP_FAILED_REASON)
                    self._emit("node_blocked", {"node": skipped, "unmet": [], "phase": "setup"})
                return False
        return True

    # ------------------------------------------------------------------
    # Node execution
    # 节点执行
    # ------------------------------------------------------------------

    async def _run_step(self, node: Subtask, phase: str) -> bool:
        """Drive one PENDING node through IN_PROGRESS to COMPLETED or FAILED."""
        node.mark_in_progress()
        self._emit("node_running", {"node": node, "phase": phase})

        result = await self._execute(node)

        if result.success:
            node.mark_completed(result)
            self._emit("node_completed", {"node": node, "result": node.result, "phase": phase})
            return True
        node.mark_failed(result.error or "Step execution failed", result)
        self._emit("node_failed", {"node": node, "result": node.result, "phase": phase})
        logger.warning("[Orchestrator] %s %s FAILED: %s", phase, node.id, node.result.error)
        return False

    async def _execute(self, node: Subtask) -> ExecutionResult:
        """
        Call the StepExecutor and always come back with an ExecutionResult.
        调用 StepExecutor，并保证总是返回 ExecutionResult。

        Exceptions raised by the executor are recorded as failures, never propagated.
        执行器抛出的异常会被记录为失败，绝不向外传播。
        """
        try:
            outcome = self._step_executor.execute(node)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            logger.exception("[Orchestrator] Step executor raised for %s", node.id)
            return ExecutionResult.fail(f"{type(exc).__name__}: {exc}", exception=type(exc).__name__)

        if isinstance(outcome, ExecutionResult):
            return outcome
        if isinstance(outcome, dict):
            try:
                return ExecutionResult.model_validate(outcome)
            except ValidationError as exc:
                return ExecutionResult.fail(f"Invalid execution result for {node.id!r}: {exc}")
        return ExecutionResult.fail(
            f"Step executor returned {type(outcome).__name__} for {node.id!r}, expected ExecutionResult"
        )

    def _cancel_remaining(self, graph: TaskGraph, remaining: list[NodeId]) -> None:
        """Move every not-yet-visited node to BLOCKED so none is left PENDING."""
        logger.warning("[Orchestrator] Run cancelled; blocking %d remaining subtasks", len(remaining))
        for nid in remaining:
            node = graph.node(nid)
            if node.is_pending():
                node.mark_blocked(CANCELLED_REASON)
                self._emit("node_blocked", {"node": node, "unmet": [], "phase": "run"})
        self._emit("run_cancelled", {"remaining": remaining})

    def _hook_steps(self, items: Iterable[HookStep], phase: str) -> list[Subtask]:
        """Fresh PENDING Subtasks for setup/teardown steps (never shared with the caller)."""
        steps = []
        for item in items:
            if isinstance(item, Subtask):
                descriptor = item.to_descriptor()
            elif isinstance(item, SubtaskDescriptor):
                descriptor = item
            else:
                try:
                    descriptor = SubtaskDescriptor.model_validate(dict(item))
                except (TypeError, ValueError) as exc:
                    raise OrchestrationError(f"Invalid {phase} step {item!r}: {exc}", cause=exc) from exc
            steps.append(Subtask.from_descriptor(descriptor, on_transition=self._on_node_transition))
        return steps

    # ------------------------------------------------------------------
    # Output aggregation
    # 结果汇总
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate(
        graph: TaskGraph,
        order: list[NodeId],
        name: str,
        started_at: float,
        duration: float,
        cancelled: bool,
        setup_steps: list[Subtask],
        teardown_steps: list[Subtask],
    ) -> RunResult:
        outcomes = [graph.node(nid).outcome() for nid in order]
        setup = [s.outcome() for s in setup_steps]
        teardown = [s.outcome() for s in teardown_steps]
        statuses = [o.status for o in outcomes]
        hooks_ok = all(o.status == TaskStatus.COMPLETED for o in setup + teardown)
        return RunResult(
            name=name,
            success=hooks_ok and all(s == TaskStatus.COMPLETED for s in statuses),
            cancelled=cancelled,
            setup_failed=any(o.status == TaskStatus.FAILED for o in setup),
            started_at=started_at,
            finished_at=started_at + duration,
            duration=max(0.0, duration),
            passed=statuses.count(TaskStatus.COMPLETED),
            failed=statuses.count(TaskStatus.FAILED),
            blocked=statuses.count(TaskStatus.BLOCKED),
            outcomes=outcomes,
            setup=setup,
            teardown=teardown,
            metrics=graph.metrics(),
        )

    # ------------------------------------------------------------------
    # Event helpers
    # 事件辅助方法
    # ------------------------------------------------------------------

    def _emit(self, event: str, data: Any) -> None:
        """Forward an event to the observer; observer errors are logged, never raised."""
        if self._on_event is None:
            return
        try:
            self._on_event(event, data)
        except Exception:
            # UI observers must not abort the run / UI 回调异常不能中断运行
            logger.exception("[Orchestrator] event handler failed on %r", event)

    def _on_node_transition(self, node_id: NodeId, old: TaskStatus, new: TaskStatus) -> None:
        """
        Callback from the state machine, forwarded as UI event.
        状态机的转移回调，转发为 UI 事件。
        """
        self._emit("node_transition", {
            "node_id": node_id,
            "from": old.value,
            "to": new.value,
        })
