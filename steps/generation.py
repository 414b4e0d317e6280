"""
Generation Step Executor - Uses an LLM to turn a subtask into step commands.
步骤生成执行器 —— 使用 LLM 将 subtask 转换为步骤命令。

Payload / 数据格式:
    {"kind": "generate", "instruction": "Log in as the demo user", "url": "https://shop.example"}

The LLM answers with a JSON object {"commands": ["navigate url=...", ...]}.
Every command must start with a known verb; the generated list is stored
as the result output (one command per line) and in metadata["commands"].
LLM 返回 JSON 对象 {"commands": [...]}。每条命令都必须以已知动词开头；
生成的命令列表写入结果输出（每行一条）以及 metadata["commands"]。
"""

from __future__ import annotations

import logging
from typing import Any

from dag.state_machine import Subtask
from llm.client import LLMClient
from schema import ExecutionResult
from steps.base import BaseStepExecutor

logger = logging.getLogger(__name__)

COMMAND_VERBS: frozenset[str] = frozenset({
    # Navigation / 导航
    "navigate", "go_back", "go_forward", "reload",
    # Interaction / 交互
    "click", "fill", "type", "press", "keypress", "check", "uncheck",
    "select_option", "hover", "focus", "blur", "clear",
    # Assertions / 断言
    "assert_exists", "assert_not_exists", "assert_visible", "assert_hidden",
    "assert_text", "assert_value", "assert_enabled", "assert_disabled",
    "assert_checked", "assert_unchecked", "assert_url", "assert_title",
    # Utility / 工具
    "wait", "wait_navigation", "wait_for", "screenshot", "set_viewport",
})

SYSTEM_PROMPT = """You are an expert E2E test automation assistant. Turn the user's test step into browser commands.

Command syntax (one command per list item):
- navigate url=<URL>
- click <selector>
- type <selector> value=<text>
- fill <selector> value=<text>
- hover <selector>
- keypress key=<key>
- wait timeout=<ms>
- wait_for <selector> timeout=<ms>
- assert_visible <selector>
- assert_text <selector> value=<expected>
- assert_value <selector> value=<expected>
- assert_url pattern=<regex>

Selectors: css=<selector>, xpath=<xpath>, text="<text>", placeholder="<text>",
label="<text>", role=<role>, testid=<id>. Prefer text, role and testid over CSS.

Return ONLY a JSON object: {"commands": ["<command>", ...]}"""


class GenerationStepExecutor(BaseStepExecutor):
    """
    Ask the LLM for the command sequence that implements one subtask.
    请求 LLM 生成实现单个 subtask 的命令序列。
    """

    def __init__(self, llm_client: LLMClient):
        self._llm = llm_client

    @property
    def name(self) -> str:
        return "generate"

    async def execute(self, node: Subtask) -> ExecutionResult:
        payload = node.payload
        instruction = str(payload.get("instruction") or node.title).strip()
        if not instruction:
            return ExecutionResult.fail(f"Subtask {node.id!r} has no instruction to generate from")

        messages = self._build_messages(instruction, payload)
        logger.info("[Generate] %s: requesting commands for %r", node.id, instruction[:80])
        data = await self._llm.chat_json(messages)

        commands = self._extract_commands(data)
        if not commands:
            return ExecutionResult.fail("LLM returned no commands", instruction=instruction)

        unknown = [c for c in commands if c.split(maxsplit=1)[0] not in COMMAND_VERBS]
        if unknown:
            return ExecutionResult.fail(
                f"LLM returned unknown commands: {unknown}",
                output="\n".join(commands),
                commands=commands,
            )

        return ExecutionResult.ok(
            "\n".join(commands),
            commands=commands,
            command_count=len(commands),
        )

    @staticmethod
    def _build_messages(instruction: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
        parts = [f"Test step: {instruction}"]
        if payload.get("url"):
            parts.append(f"Start URL: {payload['url']}")
        if payload.get("context"):
            parts.append(f"Context:\n{payload['context']}")
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": "\n\n".join(parts)},
        ]

    @staticmethod
    def _extract_commands(data: Any) -> list[str]:
        raw = data.get("commands", []) if isinstance(data, dict) else data
        if not isinstance(raw, list):
            return []
        return [str(c).strip() for c in raw if str(c).strip()]
