"""
Rich output for the CLI.
"""

import json
from typing import Any

from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from conductor.application.orchestrator import AgentSelection, AskResult
from conductor.core.domain.scheduler import BatchReport, BatchStatus
from conductor.core.domain.todos import Todo, TodoStatus
from conductor.core.domain.workflow import StepStatus, WorkflowReport, WorkflowStatus

STATUS_STYLES = {
    StepStatus.SUCCESS: "green",
    StepStatus.ERROR: "red",
    StepStatus.SKIPPED: "yellow",
    TodoStatus.COMPLETED: "green",
    TodoStatus.IN_PROGRESS: "cyan",
    TodoStatus.CANCELLED: "red",
    TodoStatus.PENDING: "white",
}


class ConductorConsole:
    """Thin wrapper around a rich Console with the CLI's display helpers."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def print_error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")

    def print_success(self, message: str) -> None:
        self.console.print(f"[bold green]{message}[/bold green]")

    def print_json(self, data: Any) -> None:
        self.console.print(JSON(json.dumps(data, default=str)))

    def print_agent_message(self, text: str, agent: str) -> None:
        self.console.print(Panel(text or "[dim](no output)[/dim]", title=f"[bold]{agent}[/bold]"))

    def print_selection(self, selection: AgentSelection) -> None:
        table = Table(title="Route", show_header=False)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Agent", selection.agent.name)
        table.add_row("Source", selection.source)
        decision = selection.decision
        if decision is not None:
            table.add_row("Strategy", decision.strategy.value)
            table.add_row("Confidence", str(decision.confidence))
            if decision.matched_signals:
                table.add_row("Signals", ", ".join(decision.matched_signals))
            if decision.reasoning:
                table.add_row("Reasoning", decision.reasoning)
        self.console.print(table)

    def print_ask_result(self, result: AskResult) -> None:
        if result.handoff is not None:
            chain = " -> ".join(result.handoff.chain)
            self.console.print(f"[dim]Handoff chain:[/dim] {chain}")
            if result.handoff.rejection is not None:
                self.console.print(
                    f"[yellow]Handoff declined ({result.handoff.rejection.reason.value}):[/yellow] "
                    f"{result.handoff.rejection.message}"
                )
        if result.result.success:
            self.print_agent_message(result.output, result.result.agent)
        else:
            self.print_error(result.result.error or "Agent turn failed")

    def print_workflow_report(self, report: WorkflowReport) -> None:
        table = Table(title=f"Workflow {report.workflow}")
        table.add_column("Step", style="cyan")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Output / Error", style="white", overflow="fold")
        for key, result in report.results.items():
            style = STATUS_STYLES.get(result.status, "white")
            detail = result.error if result.status == StepStatus.ERROR else result.output
            table.add_row(
                key,
                f"[{style}]{result.status.value}[/{style}]",
                str(result.attempts),
                (detail or "")[:200],
            )
        for entry_id in report.not_run:
            table.add_row(entry_id, "[dim]not run[/dim]", "0", "")
        self.console.print(table)

        if report.status == WorkflowStatus.COMPLETED:
            self.print_success(f"Workflow completed in {report.duration_seconds or 0:.2f}s")
        else:
            self.print_error(f"Workflow {report.status.value}: {report.error}")

    def print_todos(self, todos: list[Todo], title: str = "Todos") -> None:
        table = Table(title=title)
        table.add_column("#", justify="right")
        table.add_column("Id", style="cyan")
        table.add_column("Description", style="white", overflow="fold")
        table.add_column("Depends on")
        table.add_column("Status")
        for index, todo in enumerate(todos, start=1):
            style = STATUS_STYLES.get(todo.status, "white")
            table.add_row(
                str(index),
                todo.id,
                todo.description,
                ", ".join(todo.dependencies),
                f"[{style}]{todo.status.value}[/{style}]",
            )
        self.console.print(table)

    def print_batch_report(self, report: BatchReport) -> None:
        if report.status == BatchStatus.COMPLETED:
            self.print_success(report.summary())
        else:
            self.print_error(report.summary())
