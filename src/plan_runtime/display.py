# display.py
# All terminal output for the plan runtime demo.
#
# This module owns presentation entirely. The executor and registry log
# through structlog and never print; run.py calls named functions here.
#
# Colour language:
#   cyan   : plans and routing
#   yellow : recovery decisions
#   green  : success
#   red    : failures and halts
#   dim    : metrics

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from plan_runtime.models import ExecutionResult, MetricsSnapshot, Plan, StepResult

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: Any, max_len: int = 120) -> str:
    value = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _mark(ok: bool) -> str:
    return "[bold green]✓[/bold green]" if ok else "[bold red]✗[/bold red]"


# ---------------------------------------------------------------------------
# Pipeline entry
# ---------------------------------------------------------------------------


def banner(tools: list[str], recovery: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Plan Runtime[/bold cyan]\n"
            "[dim]Schema-validated tool dispatch with per-step recovery[/dim]\n\n"
            f"[dim]Tools    :[/dim] [white]{', '.join(tools)}[/white]\n"
            f"[dim]Recovery :[/dim] [white]{recovery}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def plan_received(plan: Plan) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("ID", justify="center", width=6)
    table.add_column("Tool", style="bold white", width=20)
    table.add_column("Parameters", style="dim white", width=32)
    table.add_column("Optional", justify="center", width=8)
    table.add_column("Description", style="white")

    for step in plan.steps:
        table.add_row(
            str(step.id),
            step.tool,
            _mono(step.parameters, 30),
            "yes" if step.optional else "",
            step.description,
        )

    console.print(
        Panel(
            table,
            title=_label("PLAN", "cyan"),
            subtitle=f"[dim]Goal: {plan.goal}[/dim]" if plan.goal else None,
            border_style="cyan",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Execution loop
# ---------------------------------------------------------------------------


def execution_start(total: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]EXECUTION · {total} step(s)[/cyan]", style="cyan"))


def step_finished(step_result: StepResult) -> None:
    console.print(
        f"  {_mark(step_result.success)} [bold cyan]{step_result.step_id}[/bold cyan]"
        f"  [white]{step_result.tool}[/white]"
    )
    if step_result.success:
        console.print(f"    [dim]→ {_mono(step_result.result, 140)}[/dim]")
        return

    console.print(f"    [red]{_mono(step_result.error, 140)}[/red]")
    recovery = step_result.error_handling
    if recovery is not None:
        detail = recovery.reason or ""
        if recovery.attempt is not None:
            attempt = recovery.attempt
            detail = f"{attempt.step_id} via {attempt.tool}: " + (
                _mono(attempt.result, 100) if attempt.success else _mono(attempt.error, 100)
            )
        console.print(f"    [yellow]↳ recovery {recovery.action}[/yellow]  [dim]{detail}[/dim]")
    if step_result.error_handling_failed:
        console.print("    [yellow]↳ recovery failed, no usable decision[/yellow]")


def execution_summary(execution: ExecutionResult) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=12)
    table.add_column("Tool", width=20)
    table.add_column("OK", justify="center", width=4)
    table.add_column("Recovered", justify="center", width=10)
    table.add_column("Output / Error", style="dim white")

    for step in execution.steps:
        table.add_row(
            str(step.step_id),
            step.tool,
            _mark(step.success),
            "[yellow]✓[/yellow]" if step.recovered else "",
            _mono(step.result if step.success else step.error, 60),
        )

    status = "[bold green]SUCCESS[/bold green]" if execution.success else "[bold red]FAILED[/bold red]"
    console.print(
        Panel(
            table,
            title=f"[dim]EXECUTION {execution.plan_id}[/dim]",
            subtitle=status,
            border_style="dim",
            padding=(0, 1),
        )
    )
    for error in execution.errors:
        halt(f"{error.step}: {error.message}")


def metrics(snapshot: MetricsSnapshot) -> None:
    console.print()
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("Tool", width=22)
    table.add_column("Calls", justify="right", width=6)
    table.add_column("Avg ms", justify="right", width=10)
    table.add_column("Total ms", justify="right", width=10)
    table.add_column("Last error", style="dim red")

    for name in snapshot.registered_tools:
        last_error = snapshot.last_error.get(name)
        table.add_row(
            name,
            str(snapshot.tool_usage.get(name, 0)),
            f"{snapshot.average_execution_time.get(name, 0.0):.2f}",
            f"{snapshot.total_execution_time.get(name, 0.0):.2f}",
            _mono(last_error.message, 50) if last_error else "",
        )

    console.print(
        Panel(
            table,
            title="[dim]TOOL METRICS[/dim]",
            subtitle=(
                f"[dim]{snapshot.executions} executions · {snapshot.errors} errors · "
                f"{snapshot.success_rate:.1f}% success[/dim]"
            ),
            border_style="dim",
            padding=(0, 1),
        )
    )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
