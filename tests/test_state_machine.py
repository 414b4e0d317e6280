"""
Subtask 状态机测试 — 覆盖：
  1. 合法转移路径 (正常路径、失败、阻塞、阻塞后重试)
  2. 非法转移抛出 InvalidTransitionError 且状态不变
  3. 结果记录 (耗时、时间戳、partial 合并、异常文本)
  4. 转移回调

运行方式:
    pytest tests/test_state_machine.py -v
"""

from __future__ import annotations

import time

import pytest

from dag.errors import InvalidTransitionError
from dag.state_machine import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    Subtask,
    allowed_transitions,
    can_transition,
)
from schema import ExecutionResult, SubtaskDescriptor, TaskStatus


def _started(node_id=1) -> Subtask:
    node = Subtask(node_id, title="login")
    node.mark_in_progress()
    return node


# ======================================================================
# Test 1: 转移表
# ======================================================================


class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(TaskStatus)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATES:
            assert allowed_transitions(status) == frozenset()

    @pytest.mark.parametrize("src,dst", [
        (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
        (TaskStatus.PENDING, TaskStatus.BLOCKED),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
        (TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
        (TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS),
    ])
    def test_legal_edges(self, src, dst):
        assert can_transition(src, dst)

    @pytest.mark.parametrize("src,dst", [
        (TaskStatus.PENDING, TaskStatus.COMPLETED),
        (TaskStatus.PENDING, TaskStatus.FAILED),
        (TaskStatus.IN_PROGRESS, TaskStatus.IN_PROGRESS),
        (TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED),
        (TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS),
        (TaskStatus.FAILED, TaskStatus.PENDING),
        (TaskStatus.BLOCKED, TaskStatus.COMPLETED),
    ])
    def test_illegal_edges(self, src, dst):
        assert not can_transition(src, dst)


# ======================================================================
# Test 2: 生命周期
# ======================================================================


class TestLifecycle:

    def test_new_subtask_is_pending_without_result(self):
        node = Subtask(1, title="open shop", dependencies=[2, 3], payload={"kind": "shell"})
        assert node.status == TaskStatus.PENDING
        assert node.result is None
        assert node.dependencies == frozenset({2, 3})
        assert node.is_pending() and not node.is_terminal()

    def test_happy_path(self):
        node = _started()
        assert node.is_in_progress()
        node.mark_completed(ExecutionResult.ok("clicked", commands=2))
        assert node.is_completed() and node.is_terminal()
        assert node.result.success is True
        assert node.result.output == "clicked"
        assert node.result.metadata == {"commands": 2}
        assert node.result.error is None

    def test_completed_without_result(self):
        node = _started()
        node.mark_completed()
        assert node.result.success is True
        assert node.result.duration >= 0

    def test_failure_path(self):
        node = _started()
        node.mark_failed("selector not found")
        assert node.is_failed() and node.is_terminal()
        assert node.result.success is False
        assert node.result.error == "selector not found"

    def test_blocked_then_retried(self):
        node = Subtask(1)
        node.mark_blocked("unmet dependencies: [0]")
        assert node.is_blocked()
        assert not node.is_terminal()
        node.mark_in_progress()
        assert node.is_in_progress()
        assert node.result is None
        node.mark_completed()
        assert node.is_completed()

    def test_blocked_result(self):
        node = Subtask(1)
        node.mark_blocked("cancelled")
        assert node.result.success is False
        assert node.result.error == "Blocked: cancelled"
        assert node.result.duration == 0.0
        assert node.result.timestamp is not None

    def test_payload_is_a_copy(self):
        node = Subtask(1, payload={"kind": "shell"})
        node.payload["kind"] = "generate"
        assert node.payload == {"kind": "shell"}

    def test_status_is_read_only(self):
        node = Subtask(1)
        with pytest.raises(AttributeError):
            node.status = TaskStatus.COMPLETED
        with pytest.raises(AttributeError):
            node.result = ExecutionResult.ok()

    def test_descriptor_roundtrip_resets_state(self):
        descriptor = SubtaskDescriptor(id="login", title="Log in", dependencies=["open"], payload={"x": 1})
        node = Subtask.from_descriptor(descriptor)
        node.mark_in_progress()
        assert node.to_descriptor() == descriptor
        assert Subtask.from_descriptor(node.to_descriptor()).is_pending()

    def test_outcome(self):
        node = _started(7)
        node.mark_completed()
        outcome = node.outcome()
        assert outcome.id == 7
        assert outcome.status == TaskStatus.COMPLETED
        assert outcome.result is node.result


# ======================================================================
# Test 3: 非法转移
# ======================================================================


class TestInvalidTransitions:

    def test_double_start_rejected(self):
        """场景 5: 对已 IN_PROGRESS 的节点再次 mark_in_progress 抛出异常，状态保持不变."""
        node = _started("checkout")
        with pytest.raises(InvalidTransitionError) as exc_info:
            node.mark_in_progress()
        err = exc_info.value
        assert err.from_status == TaskStatus.IN_PROGRESS
        assert err.to_status == TaskStatus.IN_PROGRESS
        assert err.allowed == frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})
        assert err.node_id == "checkout"
        assert "checkout" in str(err)
        assert node.status == TaskStatus.IN_PROGRESS

    def test_complete_from_pending_rejected(self):
        node = Subtask(1)
        with pytest.raises(InvalidTransitionError):
            node.mark_completed()
        assert node.is_pending()
        assert node.result is None

    def test_fail_from_pending_rejected(self):
        node = Subtask(1)
        with pytest.raises(InvalidTransitionError):
            node.mark_failed("boom")
        assert node.is_pending()

    @pytest.mark.parametrize("finish", ["mark_completed", "mark_failed"])
    def test_terminal_states_are_final(self, finish):
        node = _started()
        if finish == "mark_completed":
            node.mark_completed()
        else:
            node.mark_failed("boom")
        status, result = node.status, node.result
        for attempt in (node.mark_in_progress, node.mark_completed, lambda: node.mark_blocked("x")):
            with pytest.raises(InvalidTransitionError):
                attempt()
        assert node.status == status
        assert node.result is result

    def test_block_while_running_rejected(self):
        node = _started()
        with pytest.raises(InvalidTransitionError):
            node.mark_blocked("late")
        assert node.is_in_progress()

    def test_message_lists_allowed_states(self):
        node = Subtask(1)
        node.mark_blocked("x")
        with pytest.raises(InvalidTransitionError, match=r"Allowed: \['in_progress'\]"):
            node.mark_completed()


# ======================================================================
# Test 4: 结果记录
# ======================================================================


class TestResultRecording:

    def test_duration_measured(self):
        node = _started()
        time.sleep(0.02)
        node.mark_completed()
        assert node.result.duration >= 0.01

    def test_duration_overrides_executor_value(self):
        node = _started()
        node.mark_completed(ExecutionResult(success=True, duration=999.0))
        assert node.result.duration < 999.0

    def test_timestamp_stamped(self):
        before = time.time()
        node = _started()
        node.mark_completed()
        assert before <= node.result.timestamp <= time.time()

    def test_completed_forces_success(self):
        node = _started()
        node.mark_completed(ExecutionResult(success=False, output="ok anyway", error="stale"))
        assert node.result.success is True
        assert node.result.error is None
        assert node.result.output == "ok anyway"

    def test_failed_merges_partial(self):
        node = _started()
        partial = ExecutionResult.fail("exit 1", output="Errors:\nboom", exit_code=1)
        node.mark_failed("Command exited with code 1", partial)
        assert node.result.output == "Errors:\nboom"
        assert node.result.metadata == {"exit_code": 1}
        assert node.result.error == "Command exited with code 1"
        assert node.result.success is False
        assert node.result.duration >= 0

    def test_failed_with_exception(self):
        node = _started()
        node.mark_failed(TimeoutError("page did not load"))
        assert node.result.error == "TimeoutError: page did not load"

    def test_failed_with_empty_exception(self):
        node = _started()
        node.mark_failed(KeyError())
        assert node.result.error == "KeyError"

    def test_result_is_immutable(self):
        node = _started()
        node.mark_completed()
        with pytest.raises(Exception):
            node.result.success = False


# ======================================================================
# Test 5: 转移回调
# ======================================================================


class TestTransitionCallback:

    def test_callback_sees_every_transition(self):
        seen = []
        node = Subtask(1, on_transition=lambda nid, old, new: seen.append((nid, old, new)))
        node.mark_in_progress()
        node.mark_failed("boom")
        assert seen == [
            (1, TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
            (1, TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
        ]

    def test_callback_not_called_on_rejected_transition(self):
        seen = []
        node = Subtask(1)
        node.set_transition_callback(lambda *args: seen.append(args))
        with pytest.raises(InvalidTransitionError):
            node.mark_completed()
        assert seen == []

    def test_callback_error_does_not_break_lifecycle(self, caplog):
        def broken(*_):
            raise RuntimeError("ui crashed")

        node = Subtask(1, on_transition=broken)
        node.mark_in_progress()
        node.mark_completed()
        assert node.is_completed()
        assert "transition callback failed" in caplog.text
