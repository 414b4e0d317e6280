"""
DAG Test Runner - Command-line entry point.
DAG 测试运行器 —— 命令行入口。

Loads a YAML/JSON plan, builds the dependency graph, runs every subtask in
topological order with a rich console UI, then writes JSON/JUnit reports.
加载 YAML/JSON 计划，构建依赖图，以 Rich 控制台 UI 按拓扑顺序运行所有 subtask，
最后输出 JSON/JUnit 报告。

Usage / 用法:
    python main.py plans/checkout.yaml
    python main.py plans/checkout.yaml --format json,junit --out reports/
    python main.py plans/checkout.yaml --dry-run
    python main.py plans/checkout.yaml -v

Exit codes / 退出码: 0 all subtasks completed, 1 some failed or blocked, 2 invalid plan.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from rich.console import Console
from rich.logging import RichHandler

import config
from dag import ConfigurationError, Orchestrator, TaskGraph, load_plan
from llm.client import LLMClient
from reporting import ConsoleReporter, build_graph_tree, get_reporter, write_reports
from schema import RunPlan, RunResult
from steps import GenerationStepExecutor, ShellStepExecutor, StepRouter

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。
    verbose=True 时启用 DEBUG 级别；同时抑制 httpx/openai/httpcore 的低优先级日志。
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_router() -> StepRouter:
    """Default executors: shell commands and LLM step generation. 默认执行器：shell 命令与 LLM 步骤生成。"""
    return StepRouter(
        [ShellStepExecutor(), GenerationStepExecutor(LLMClient())],
        default_kind="shell",
    )


async def run_plan(plan: RunPlan, reporter: ConsoleReporter, router: StepRouter | None = None) -> RunResult:
    """
    Build the graph and run it; Ctrl+C blocks the remaining subtasks instead of aborting.
    构建图并执行；Ctrl+C 会将剩余 subtask 标记为 BLOCKED，而不是直接中止。
    """
    graph = TaskGraph.build(plan.subtasks)
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass  # Windows / non-main thread: no cancellation hook / 不支持信号处理时无取消钩子

    orchestrator = Orchestrator(
        router or build_router(),
        on_event=reporter.on_event,
        is_cancelled=cancel.is_set,
    )
    try:
        return await orchestrator.run(graph, name=plan.name, setup=plan.setup, teardown=plan.teardown)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an end-to-end test plan in dependency order.")
    parser.add_argument("plan", help="YAML or JSON plan file")
    parser.add_argument(
        "--format", default=",".join(config.REPORT_FORMATS),
        help="Comma-separated report formats: json, junit (default: %(default)s)",
    )
    parser.add_argument("--out", default=config.REPORT_DIR, help="Report directory (default: %(default)s)")
    parser.add_argument("--dry-run", action="store_true", help="Validate the plan and print the execution order")
    parser.add_argument("--quiet-output", action="store_true", help="Do not print step output panels")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    程序入口：解析命令行参数，加载计划并执行。
    """
    args = parse_args(argv)
    setup_logging(args.verbose)
    reporter = ConsoleReporter(console=console, show_output=not args.quiet_output)

    formats = [f.strip() for f in args.format.split(",") if f.strip()]
    try:
        for fmt in formats:
            get_reporter(fmt)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_CONFIG

    try:
        plan = load_plan(args.plan)
        if args.dry_run:
            graph = TaskGraph.build(plan.subtasks)
            console.print(build_graph_tree(graph, plan.name))
            console.print(f"Execution order: {graph.topological_order()}")
            console.print(f"[dim]Waves: {graph.ready_waves()}[/dim]")
            for phase in ("setup", "teardown"):
                steps = [step.id for step in getattr(plan, phase)]
                if steps:
                    console.print(f"{phase.capitalize()} steps: {steps}")
            return EXIT_OK
        result = asyncio.run(run_plan(plan, reporter))
    except ConfigurationError as exc:
        console.print(f"[red]Invalid plan: {exc}[/red]")
        return EXIT_CONFIG

    if formats:
        for path in write_reports(result, args.out, formats):
            console.print(f"[dim]Report written: {path}[/dim]")
    return EXIT_OK if result.success else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
