"""
Console Reporter - Rich rendering of graphs, live run events and the final summary.
控制台报告器 —— 使用 Rich 渲染依赖图、实时运行事件以及最终汇总。
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from dag.graph import TaskGraph
from dag.state_machine import Subtask
from schema import ExecutionResult, NodeId, RunResult

# Status -> Rich style mapping
# 节点状态 -> Rich 样式映射
STATUS_STYLES = {
    "pending": "dim",
    "in_progress": "bold yellow",
    "completed": "green",
    "failed": "red",
    "blocked": "magenta",
}


def _status_label(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]({value})[/{style}]"


# ======================================================================
# Graph Tree Visualization
# 依赖图树形可视化
# ======================================================================

# Nesting beyond this depth is summarised; very long chains stay readable.
# 超过此深度的嵌套只做概括显示，长依赖链也能保持可读。
MAX_TREE_DEPTH = 24


def build_graph_tree(graph: TaskGraph, title: str = "Task Graph", max_depth: int = MAX_TREE_DEPTH) -> Tree:
    """
    Build a Rich Tree of the graph: roots at the top, dependents nested below.
    A node with several dependencies is expanded under the first one only and
    referenced elsewhere. Branches deeper than `max_depth` are collapsed into a
    single "... not shown" line.

    构建依赖图的 Rich Tree：根节点在顶层，下游节点逐级嵌套。
    拥有多个依赖的节点只在第一个父节点下展开，其余位置仅做引用。
    超过 `max_depth` 的分支折叠为一行提示。
    使用显式栈迭代构建，长依赖链不会触发递归深度限制。
    """
    tree = Tree(f"[bold]{title}[/bold]")
    expanded: set[NodeId] = set()
    # (parent branch, node id, depth); pushed in reverse so ascending ids come out first
    stack: list[tuple[Tree, NodeId, int]] = [(tree, root, 1) for root in reversed(graph.roots())]

    while stack:
        branch, nid, depth = stack.pop()
        if nid in expanded:
            branch.add(f"[dim]{nid} (see above)[/dim]")
            continue
        if depth > max_depth:
            branch.add(f"[dim]... {nid} and deeper subtasks not shown[/dim]")
            continue
        expanded.add(nid)
        node = graph.node(nid)
        label = f"[cyan]{nid}[/cyan]: {escape(node.title)} {_status_label(node.status.value)}"
        if len(node.dependencies) > 1:
            deps = ", ".join(str(d) for d in sorted(node.dependencies))
            label += f" [dim]needs {deps}[/dim]"
        child_branch = branch.add(label)
        for child in sorted(graph.dependents(nid), reverse=True):
            stack.append((child_branch, child, depth + 1))
    return tree


class ConsoleReporter:
    """
    Prints live run events and the final result table.
    打印实时运行事件和最终结果表格。
    """

    name = "console"

    def __init__(self, console: Console | None = None, show_output: bool = True):
        self.console = console or Console()
        self._show_output = show_output

    # ------------------------------------------------------------------
    # UI Event Handler - Pretty-prints orchestrator events
    # UI 事件处理器：美化打印 Orchestrator 事件
    # ------------------------------------------------------------------

    def on_event(self, event: str, data: Any) -> None:
        if event == "run_started":
            graph: TaskGraph = data["graph"]
            self.console.print()
            self.console.print(Panel(
                build_graph_tree(graph, data.get("name") or "Task Graph"),
                title="[bold magenta]Execution Plan[/bold magenta]",
                border_style="magenta",
            ))
            order = ", ".join(str(n) for n in data["order"])
            self.console.print(f"  [dim]Order: {order}[/dim]")
            for phase in ("setup", "teardown"):
                if data.get(phase):
                    steps = ", ".join(str(s) for s in data[phase])
                    self.console.print(f"  [dim]{phase.capitalize()}: {steps}[/dim]")

        elif event == "node_running":
            node: Subtask = data["node"]
            self.console.print(f"    [yellow]>> {node.id}:[/yellow] {escape(node.title)}")

        elif event == "node_completed":
            node = data["node"]
            result: ExecutionResult = data["result"]
            self.console.print(f"    [green]<< {node.id} completed[/green] [dim]({result.duration:.2f}s)[/dim]")
            if self._show_output and result.output:
                self.console.print(Panel(result.output[:500], title=f"{node.id} Output", border_style="green"))

        elif event == "node_failed":
            node = data["node"]
            result = data["result"]
            self.console.print(f"    [red]<< {node.id} FAILED:[/red] {escape(result.error or '')}")
            if self._show_output and result.output:
                self.console.print(Panel(result.output[:500], title=f"{node.id} Error", border_style="red"))

        elif event == "node_blocked":
            node = data["node"]
            reason = node.result.error if node.result else "blocked"
            self.console.print(f"    [magenta]-- {node.id} {escape(reason)}[/magenta]")

        elif event == "run_cancelled":
            self.console.print("[yellow]Run cancelled; remaining subtasks blocked.[/yellow]")

        elif event == "node_transition":
            pass  # Covered by node_running/completed/failed/blocked / 已由其他事件覆盖

        elif event == "run_finished":
            self.render(data)

    # ------------------------------------------------------------------
    # Summary
    # 汇总输出
    # ------------------------------------------------------------------

    def build_table(self, result: RunResult) -> Table:
        table = Table(title=f"Results: {result.name or 'run'}", border_style="cyan", show_lines=True)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Subtask", style="white")
        table.add_column("Status", width=12)
        table.add_column("Duration", justify="right", width=9)
        table.add_column("Error", style="dim")
        rows = (
            [(f"setup: {o.id}", o) for o in result.setup]
            + [(str(o.id), o) for o in result.outcomes]
            + [(f"teardown: {o.id}", o) for o in result.teardown]
        )
        for label, outcome in rows:
            res = outcome.result
            duration = f"{res.duration:.2f}s" if res and res.duration is not None else "-"
            style = STATUS_STYLES.get(outcome.status.value, "white")
            table.add_row(
                escape(label),
                escape(outcome.title),
                f"[{style}]{outcome.status.value}[/{style}]",
                duration,
                escape(res.error or "") if res else "",
            )
        return table

    def render(self, result: RunResult) -> None:
        self.console.print(self.build_table(result))
        style = "green" if result.success else "red"
        verdict = "PASSED" if result.success else "FAILED"
        metrics = result.metrics
        self.console.print(Panel(
            f"Verdict: [{style}]{verdict}[/{style}]  |  "
            f"{result.passed} passed, {result.failed} failed, {result.blocked} blocked  |  "
            f"{result.duration:.2f}s\n"
            f"[dim]{metrics.node_count} nodes, {metrics.edge_count} edges, depth {metrics.depth}[/dim]"
            + ("\n[red]Setup failed; no subtask was run.[/red]" if result.setup_failed else ""),
            title="[bold]Summary[/bold]",
            border_style=style,
        ))
