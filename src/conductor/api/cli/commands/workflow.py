"""Workflow commands - list and run declarative workflows."""

import typer
from rich.table import Table

from conductor.api.cli import runtime
from conductor.api.cli.output_formatter import ConductorConsole
from conductor.core.domain.errors import ConductorError
from conductor.core.domain.workflow import ParallelGroup

app = typer.Typer(help="Workflow execution")


@app.command("list")
def list_workflows(ctx: typer.Context):
    """List the loaded workflows."""
    out = ConductorConsole()
    orchestrator = runtime.create_orchestrator(ctx)
    workflows = orchestrator.workflow_store.list_workflows() if orchestrator.workflow_store else []
    if not workflows:
        out.console.print("[dim]No workflows loaded (set workflows_file or --workflows)[/dim]")
        return

    table = Table(title="Workflows")
    table.add_column("Name", style="cyan")
    table.add_column("Steps", justify="right")
    table.add_column("Description", style="white")
    for workflow in workflows:
        steps = sum(
            len(entry.steps) if isinstance(entry, ParallelGroup) else 1
            for entry in workflow.steps
        )
        table.add_row(workflow.name, str(steps), workflow.description)
    out.console.print(table)


@app.command("run")
def run_workflow(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Workflow name"),
    input_text: str = typer.Argument(..., help="Workflow input (${workflow.input})"),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Run a workflow by name.

    Examples:
        conductor workflow run review "Review the payment module"
    """
    out = ConductorConsole()
    orchestrator = runtime.create_orchestrator(ctx)
    try:
        report = runtime.run_cancellable(
            orchestrator, lambda: orchestrator.run_workflow(name, input_text)
        )
    except ConductorError as e:
        out.print_error(str(e))
        raise typer.Exit(1)

    if json_output:
        out.print_json(report.to_dict())
    else:
        out.print_workflow_report(report)
    if not report.succeeded:
        raise typer.Exit(1)
