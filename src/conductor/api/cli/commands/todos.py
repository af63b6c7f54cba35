"""Todo commands - turn a plan into todos and execute them.

Progress is kept next to the plan in `<plan>.todos.json`, so a later run
resumes after the todos that already completed.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog
import typer
import yaml

from conductor.api.cli import runtime
from conductor.api.cli.output_formatter import ConductorConsole
from conductor.application.orchestrator import Orchestrator
from conductor.core.domain.errors import ConductorError
from conductor.core.domain.todos import Todo
from conductor.core.domain.tool_calls import ApprovalMode

app = typer.Typer(help="Plan-driven todo execution")

logger = structlog.get_logger().bind(component="cli.todos")


class BatchMode(str, Enum):
    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"


def read_plan(path: Path) -> dict:
    """Read a plan from a JSON or YAML file."""
    if not path.exists():
        raise typer.BadParameter(f"Plan file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text) or {}


def state_path(plan_file: Path) -> Path:
    return plan_file.with_name(f"{plan_file.stem}.todos.json")


def load_state(path: Path) -> list[Todo]:
    """Todos saved by an earlier run, or an empty list."""
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Todo state file {path} is not valid JSON: {e}")
    return [Todo.from_dict(item) for item in data.get("todos", [])]


def save_state(path: Path, todos: list[Todo]) -> None:
    payload = {"todos": [todo.to_dict() for todo in todos]}
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.debug("todos.state_saved", path=str(path), todos=len(todos))


def load_todos(orchestrator: Orchestrator, plan_file: Path, fresh: bool = False) -> list[Todo]:
    """Load the plan into the session and restore earlier progress unless fresh."""
    ordered = orchestrator.load_plan(read_plan(plan_file))
    if not fresh:
        restored = orchestrator.session.todos.restore(load_state(state_path(plan_file)))
        if restored:
            logger.info("todos.state_restored", plan=str(plan_file), completed=restored)
    return ordered


@app.command("plan")
def plan_todos(
    ctx: typer.Context,
    plan_file: Path = typer.Argument(..., help="Plan file (JSON or YAML)"),
    fresh: bool = typer.Option(False, "--fresh", help="Ignore progress saved by earlier runs"),
):
    """Convert a plan into todos and show them in execution order."""
    out = ConductorConsole()
    orchestrator = runtime.create_orchestrator(ctx)
    try:
        ordered = load_todos(orchestrator, plan_file, fresh)
    except ConductorError as e:
        out.print_error(str(e))
        raise typer.Exit(1)

    plan = orchestrator.session.plan
    title = plan.title if plan and plan.title else "Todos"
    out.print_todos(ordered, title=f"{title} (execution order)")


@app.command("run")
def run_todos(
    ctx: typer.Context,
    plan_file: Path = typer.Argument(..., help="Plan file (JSON or YAML)"),
    todo: Optional[str] = typer.Option(None, "--todo", "-t", help="Execute only this todo"),
    mode: BatchMode = typer.Option(BatchMode.DEFAULT, "--mode", "-m", help="Approval mode for the batch"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Run every todo with this agent"),
    fresh: bool = typer.Option(False, "--fresh", help="Start over instead of resuming earlier progress"),
):
    """Execute one todo, or every ready todo in dependency order.

    Examples:
        conductor todos run plan.json
        conductor todos run plan.json --mode auto_edit
        conductor todos run plan.json --todo step-1
    """
    out = ConductorConsole()
    orchestrator = runtime.create_orchestrator(ctx)
    try:
        load_todos(orchestrator, plan_file, fresh)
    except ConductorError as e:
        out.print_error(str(e))
        raise typer.Exit(1)

    try:
        if todo:
            result = runtime.run_cancellable(
                orchestrator, lambda: orchestrator.execute_todo(todo, agent)
            )
            if result.success:
                out.print_agent_message(result.output, result.agent)
            else:
                out.print_error(result.error or f"Todo '{todo}' failed")
        else:
            report = runtime.run_cancellable(
                orchestrator,
                lambda: orchestrator.execute_all(ApprovalMode(mode.value), agent),
            )
            out.print_batch_report(report)
    except ConductorError as e:
        out.print_error(str(e))
        raise typer.Exit(1)
    finally:
        save_state(state_path(plan_file), orchestrator.session.todos.all())

    out.print_todos(orchestrator.session.todos.all())
