"""
Terminal visualizer for sandbox runs and orchestrator sessions
"""

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text
from rich.tree import Tree

from ptc_sandbox.caller import CodeExecutionResult
from ptc_sandbox.evaluator import RunStatus, SandboxRun
from ptc_sandbox.savings import TokenSavingsEstimate
from ptc_sandbox.tracer import CapabilityCallRecord

_STATUS_STYLES = {
    RunStatus.RUNNING: "yellow",
    RunStatus.COMPLETED: "green",
    RunStatus.FAILED: "red",
    RunStatus.TIMED_OUT: "red",
}


def truncate(text: str, max_length: int = 1000) -> str:
    if len(text) > max_length:
        return text[:max_length] + "\n... (truncated)"
    return text


def format_json(data: Any, max_length: int = 500) -> str:
    """Format data as JSON string, truncating if too long."""
    json_str = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n  ... (truncated)"
    return json_str


def render_call_record(record: CapabilityCallRecord, tree: Tree, index: int) -> None:
    """Render one capability call."""
    origin = f"[magenta]bridged[/magenta] from {record.source}" if record.is_bridged else "[cyan]local[/cyan]"
    status = "[green]ok[/green]" if record.success else "[red]error[/red]"
    call_node = tree.add(
        f"[dim white]{index}.[/dim white] [bold yellow]{record.capability}[/bold yellow] "
        f"({origin}) {status} [dim white]{record.duration_ms:.1f}ms[/dim white]"
    )

    if record.args:
        args_node = call_node.add("[green]Args:[/green]")
        args_node.add(Syntax(format_json(record.args), "json", theme="monokai", line_numbers=False))

    if record.success:
        result_node = call_node.add("[cyan]Result:[/cyan]")
        result_node.add(Syntax(format_json(record.result), "json", theme="monokai", line_numbers=False))
    else:
        error_node = call_node.add("[red]Error:[/red]")
        error_node.add(Text(truncate(record.error or ""), style="white"))


def render_savings(savings: TokenSavingsEstimate, tree: Tree) -> None:
    """Render the token-savings breakdown."""
    savings_node = tree.add(
        f"[magenta]Tokens saved:[/magenta] [bold yellow]~{savings.total:,}[/bold yellow]"
    )
    savings_node.add(f"[dim white]Intermediate results:[/dim white] {savings.intermediate_result_tokens:,}")
    savings_node.add(f"[dim white]Round-trip context:[/dim white] {savings.round_trip_context_tokens:,}")
    savings_node.add(f"[dim white]Tool-call overhead:[/dim white] {savings.tool_call_overhead_tokens:,}")
    savings_node.add(f"[dim white]Model decisions:[/dim white] {savings.model_decision_tokens:,}")


def build_run_tree(run: SandboxRun, savings: TokenSavingsEstimate | None = None) -> Tree:
    """Build the tree for one sandbox run."""
    style = _STATUS_STYLES[run.status]
    tree = Tree(
        f"[bold cyan]Sandbox Run[/bold cyan] {run.id} "
        f"[dim white]│[/dim white] [{style}]{run.status.value}[/{style}] "
        f"[dim white]│[/dim white] {run.execution_time_ms:.0f}ms"
    )

    script_node = tree.add("[green]Script:[/green]")
    script_node.add(Syntax(truncate(run.script), "python", theme="monokai", line_numbers=True))

    if run.trace:
        trace_node = tree.add(f"[bold white]Trace[/bold white] ({len(run.trace)} calls)")
        for i, record in enumerate(run.trace, 1):
            render_call_record(record, trace_node, i)
    else:
        tree.add("[dim white](no capability calls)[/dim white]")

    if run.stdout:
        stdout_node = tree.add("[green]stdout:[/green]")
        stdout_node.add(Text(truncate(run.stdout, 2000), style="white"))

    if run.error is not None:
        error_node = tree.add("[red]Error:[/red]")
        error_node.add(Text(truncate(run.error_text or ""), style="white"))
    else:
        output_node = tree.add("[cyan]Output:[/cyan]")
        output_node.add(Syntax(format_json(run.output, 2000), "json", theme="monokai", line_numbers=False))

    if savings is not None:
        render_savings(savings, tree)

    return tree


def visualize_run(
    run: SandboxRun,
    savings: TokenSavingsEstimate | None = None,
    console: Console | None = None
) -> None:
    """Visualize a sandbox run in the terminal."""
    if console is None:
        console = Console()

    panel = Panel(
        build_run_tree(run, savings),
        title="[bold]Programmatic Tool Call[/bold]",
        border_style="cyan",
        expand=False,
    )
    console.print(panel)


def visualize_session(metadata: dict, console: Console | None = None) -> None:
    """Visualize the session metadata returned by the orchestrator."""
    if console is None:
        console = Console()

    input_tokens = metadata.get("inputTokens", 0)
    output_tokens = metadata.get("outputTokens", 0)
    tree = Tree(
        f"[bold cyan]Session[/bold cyan] [dim white]│[/dim white] "
        f"[magenta]tokens:[/magenta] [cyan]{input_tokens:,}[/cyan] in • "
        f"[green]{output_tokens:,}[/green] out • "
        f"[yellow]{metadata.get('totalTokens', 0):,}[/yellow] total"
    )
    tree.add(f"[dim white]Tokens saved:[/dim white] ~{metadata.get('tokensSaved', 0):,}")
    tree.add(f"[dim white]Tool calls:[/dim white] {metadata.get('toolCallCount', 0)}")

    executions = metadata.get("codeExecutions", [])
    if executions:
        executions_node = tree.add(f"[bold white]Code executions[/bold white] ({len(executions)})")
        for i, execution in enumerate(executions, 1):
            run_meta = execution.get("metadata", {})
            status = "[red]error[/red]" if "error" in execution else "[green]ok[/green]"
            node = executions_node.add(
                f"[dim white]{i}.[/dim white] {status} "
                f"{run_meta.get('toolCallCount', 0)} calls, "
                f"{run_meta.get('executionTimeMs', 0):.0f}ms, "
                f"~{run_meta.get('totalTokensSaved', 0):,} tokens saved"
            )
            if run_meta.get("toolsUsed"):
                node.add(f"[dim white]Tools:[/dim white] {', '.join(run_meta['toolsUsed'])}")

    console.print(Panel(tree, title="[bold]Orchestrator Session[/bold]", border_style="cyan", expand=False))


class visualize:
    """
    Collects code execution results and renders them.

    Usage:
        viz = visualize(auto_show=True)
        result = await caller.execute_code(script)
        viz.capture(result)
    """

    def __init__(self, auto_show: bool = True, console: Console | None = None):
        """
        Args:
            auto_show: Whether to render every result as it is captured (default: True)
        """
        self.auto_show = auto_show
        self.results: list[CodeExecutionResult] = []
        self.console = console or Console()

    def capture(self, result: CodeExecutionResult) -> None:
        self.results.append(result)
        if self.auto_show:
            visualize_run(result.run, result.savings, self.console)

    def show_all(self) -> None:
        for result in self.results:
            visualize_run(result.run, result.savings, self.console)


def show_run(result: CodeExecutionResult | SandboxRun) -> None:
    """
    Visualize a single code execution result or bare run.

    Args:
        result: a ``CodeExecutionResult`` or a ``SandboxRun`` (e.g. ``error.run``)
    """
    if isinstance(result, CodeExecutionResult):
        visualize_run(result.run, result.savings)
    else:
        visualize_run(result)
