"""
Plan loader - reads subtask descriptors from YAML or JSON plan files.
计划加载器 —— 从 YAML 或 JSON 计划文件中读取 subtask 描述。

Expected shape / 期望格式:

    name: checkout-flow
    description: Guest checkout with card payment
    subtasks:
      - id: 1
        title: Open the shop
        payload: {kind: shell, command: "..."}
      - id: 2
        title: Add item to cart
        dependencies: [1]
        payload: {kind: generate, instruction: "..."}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from dag.errors import ConfigurationError
from schema import RunPlan

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = {".yaml", ".yml"}


def load_plan(path: str | Path) -> RunPlan:
    """
    Load and validate a plan file. Any read/parse/validation problem becomes a
    ConfigurationError naming the file.
    加载并校验计划文件。读取、解析或校验失败均转换为带文件名的 ConfigurationError。
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read plan file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot parse plan file {path}: {exc}") from exc

    if isinstance(data, dict):
        data.setdefault("name", path.stem)
    plan = parse_plan(data, source=str(path))
    logger.info("[Loader] Loaded plan %r from %s (%d subtasks)", plan.name, path, len(plan.subtasks))
    return plan


def parse_plan(data: Any, source: str = "<memory>") -> RunPlan:
    """Validate an in-memory plan mapping."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"Plan in {source} must be a mapping, got {type(data).__name__}")
    try:
        return RunPlan.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid plan in {source}: {exc}") from exc
