"""
Reporting - renderers for the Orchestrator's RunResult.
报告模块 —— Orchestrator 运行结果（RunResult）的各种渲染器。
"""

from __future__ import annotations

import logging
from pathlib import Path

from schema import RunResult

from .console import ConsoleReporter, build_graph_tree
from .json_report import JSONReporter
from .junit import JUnitReporter

logger = logging.getLogger(__name__)

_FILE_REPORTERS = {
    "json": JSONReporter,
    "junit": JUnitReporter,
}


def get_reporter(name: str) -> JSONReporter | JUnitReporter:
    """Return a file reporter by name; ValueError for unknown names."""
    try:
        return _FILE_REPORTERS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown report format {name!r}; choose from {sorted(_FILE_REPORTERS)}") from None


def write_reports(result: RunResult, output_dir: str | Path, formats: list[str]) -> list[Path]:
    """Write one report per format into `output_dir`, named after the run."""
    base = (result.name or "run").replace("/", "_").replace(" ", "_")
    written = []
    for fmt in formats:
        reporter = get_reporter(fmt)
        path = reporter.write_to_file(result, Path(output_dir) / f"{base}.{reporter.file_extension}")
        logger.info("[Report] %s report written to %s", reporter.name, path)
        written.append(path)
    return written


__all__ = [
    "ConsoleReporter",
    "JSONReporter",
    "JUnitReporter",
    "build_graph_tree",
    "get_reporter",
    "write_reports",
]
