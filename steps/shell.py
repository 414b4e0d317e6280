"""
Shell Step Executor - Runs a subtask's command in a subprocess.
Shell 步骤执行器 —— 在子进程中运行 subtask 的命令。

Payload / 数据格式:
    {"kind": "shell", "command": "npx playwright test login.spec.ts", "cwd": "e2e", "timeout": 120}

Executes the command with a timeout, capturing stdout and stderr. Exit code 0
means success; anything else, including a timeout, is a failed result.
带超时地执行命令并捕获 stdout 和 stderr。退出码为 0 视为成功；
其他情况（包括超时）均为失败结果。
"""

from __future__ import annotations

import asyncio
import logging

import config
from dag.state_machine import Subtask
from schema import ExecutionResult
from steps.base import BaseStepExecutor

logger = logging.getLogger(__name__)


class ShellStepExecutor(BaseStepExecutor):
    """
    Run `payload["command"]` through the system shell with timeout protection.
    通过系统 shell 运行 `payload["command"]`，带超时保护。
    """

    def __init__(self, timeout: int | None = None, cwd: str | None = None):
        self._timeout = timeout or config.STEP_TIMEOUT  # 默认超时时间（秒）
        self._cwd = cwd                                  # 默认工作目录

    @property
    def name(self) -> str:
        return "shell"

    async def execute(self, node: Subtask) -> ExecutionResult:
        payload = node.payload
        command = str(payload.get("command", "")).strip()
        if not command:
            return ExecutionResult.fail(f"Subtask {node.id!r} has no shell command")

        timeout = float(payload.get("timeout", self._timeout))
        cwd = payload.get("cwd", self._cwd)
        logger.info("[Shell] %s: running %r (timeout %.0fs)", node.id, command, timeout)

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        try:
            # 使用 asyncio.wait_for 实现异步超时控制
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            return ExecutionResult.fail(
                f"Command timed out after {timeout:.0f}s", command=command, timed_out=True,
            )
        finally:
            # Timeout or cancellation: never leave the child running
            # 超时或被取消时都要结束子进程
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        output = self._format_output(stdout.decode(errors="replace"), stderr.decode(errors="replace"))
        if proc.returncode != 0:
            return ExecutionResult.fail(
                f"Command exited with code {proc.returncode}",
                output=output,
                command=command,
                exit_code=proc.returncode,
            )
        return ExecutionResult.ok(output, command=command, exit_code=0)

    def _format_output(self, stdout: str, stderr: str) -> str:
        output_parts = []
        if stdout.strip():
            output_parts.append(f"Output:\n{stdout.strip()}")
        if stderr.strip():
            output_parts.append(f"Errors:\n{stderr.strip()}")
        if not output_parts:
            return "Command executed successfully (no output)."
        return self.truncate("\n".join(output_parts))
