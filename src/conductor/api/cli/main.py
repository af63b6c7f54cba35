"""Conductor CLI entry point."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from conductor.api.cli import runtime
from conductor.api.cli.commands import route, todos, workflow

app = typer.Typer(
    name="conductor",
    help="Conductor - agent routing, handoffs, workflows and todo execution",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("route")(route.route_command)
app.command("ask")(route.ask_command)
app.add_typer(workflow.app, name="workflow", help="Workflow execution")
app.add_typer(todos.app, name="todos", help="Plan-driven todo execution")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
    agents_file: Optional[Path] = typer.Option(None, "--agents", help="Agent definitions (YAML)"),
    workflows_file: Optional[Path] = typer.Option(None, "--workflows", help="Workflow definitions (YAML)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Conductor CLI."""
    runtime.configure_logging(debug)
    ctx.obj = {
        "config": config,
        "agents_file": agents_file,
        "workflows_file": workflows_file,
        "debug": debug,
    }


@app.command()
def version():
    """Show Conductor version."""
    from conductor import __version__

    console.print(f"[bold blue]Conductor[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
