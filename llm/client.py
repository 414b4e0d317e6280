"""
LLM Client - Unified wrapper for OpenAI-compatible APIs.
LLM 客户端 —— OpenAI 兼容 API 的统一封装。

Used by the step-generation executor to turn a natural-language subtask into
an ordered list of step commands. Supports any provider that exposes an
OpenAI-compatible chat completions endpoint (OpenAI, DeepSeek, Ollama, vLLM, ...).
供步骤生成执行器使用，把自然语言描述的 subtask 转换为有序的步骤命令列表。
支持任何暴露 OpenAI 兼容 chat completions 接口的服务商。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from openai import AsyncOpenAI, BadRequestError

import config

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Thin async wrapper around an OpenAI-compatible chat completions API.
    OpenAI 兼容 chat completions API 的轻量异步封装。
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
    ):
        self.model = model or config.LLM_MODEL  # 使用的模型名称
        self._client = AsyncOpenAI(
            base_url=base_url or config.LLM_BASE_URL,  # API 端点地址
            api_key=api_key or config.LLM_API_KEY,      # API 密钥
        )

    # ------------------------------------------------------------------
    # Core chat completion
    # 基础文本对话
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int = 2048,
        **kwargs: Any,
    ) -> str:
        """Simple chat completion that returns the assistant's text. 返回 assistant 的文本响应。"""
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=config.LLM_TEMPERATURE if temperature is None else temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        return resp.choices[0].message.content or ""

    # ------------------------------------------------------------------
    # Convenience: structured JSON output
    # 结构化 JSON 输出（便捷方法）
    # ------------------------------------------------------------------

    async def chat_json(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int = 2048,
        **kwargs: Any,
    ) -> Any:
        """
        Request a JSON response from the LLM.
        Falls back to extracting JSON from text if response_format is not supported.

        要求 LLM 返回 JSON 格式响应。
        若服务不支持 response_format（如部分 Ollama 模型），则降级为从纯文本中提取 JSON。
        """
        try:
            # 优先使用 JSON mode（强制 LLM 输出合法 JSON）
            resp = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=config.LLM_TEMPERATURE if temperature is None else temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},  # OpenAI JSON mode
                **kwargs,
            )
            text = resp.choices[0].message.content or "{}"
        except BadRequestError:
            # 部分模型/服务不支持 response_format，降级为普通文本模式
            logger.warning("[LLM] JSON mode not supported, falling back to plain text")
            text = await self.chat(messages, temperature=temperature, max_tokens=max_tokens)

        return self.parse_json(text)

    # ------------------------------------------------------------------
    # Helpers
    # 辅助方法
    # ------------------------------------------------------------------

    @staticmethod
    def parse_json(text: str) -> Any:
        """
        Best-effort JSON extraction from LLM output.
        从 LLM 输出中尽力提取 JSON，处理三种常见格式：
        1. 纯 JSON 字符串
        2. Markdown 代码块（```json ... ``` 或 ``` ... ```）
        3. 无法解析时抛出 ValueError
        """
        text = text.strip()
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
        for fence in ("```json", "```"):
            if fence in text:
                start = text.index(fence) + len(fence)
                end = text.find("```", start)
                if end == -1:
                    end = len(text)
                return json.loads(text[start:end].strip())
        raise ValueError(f"Could not parse JSON from LLM output:\n{text[:300]}")
