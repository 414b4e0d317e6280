"""
JSON Reporter - machine-readable run report for CI pipelines.
JSON 报告器 —— 面向 CI 流水线的机器可读运行报告。
"""

from __future__ import annotations

import json
from pathlib import Path

from schema import RunResult


class JSONReporter:
    name = "json"
    file_extension = "json"

    def __init__(self, indent: int = 2):
        self._indent = indent

    def generate(self, result: RunResult) -> str:
        return json.dumps(result.to_dict(), indent=self._indent, ensure_ascii=False)

    def write_to_file(self, result: RunResult, output_path: str | Path) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.generate(result), encoding="utf-8")
        return path
