"""Route and ask commands - agent selection and single agent turns."""

from typing import Optional

import typer

from conductor.api.cli import runtime
from conductor.api.cli.output_formatter import ConductorConsole
from conductor.core.domain.errors import ConductorError
from conductor.core.domain.routing import RoutingStrategy


def route_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Request to route"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Use this agent, skip routing"),
    no_routing: bool = typer.Option(False, "--no-routing", help="Use the default agent"),
    strategy: Optional[RoutingStrategy] = typer.Option(None, "--strategy", "-s", help="Routing strategy"),
    json_output: bool = typer.Option(False, "--json", help="Print JSON"),
):
    """Show which agent would handle a request."""
    out = ConductorConsole()
    orchestrator = runtime.create_orchestrator(ctx)
    try:
        selection = runtime.run_cancellable(
            orchestrator,
            lambda: orchestrator.select_agent(text, agent, no_routing, strategy),
        )
    except ConductorError as e:
        out.print_error(str(e))
        raise typer.Exit(1)

    if json_output:
        decision = selection.decision
        out.print_json(
            {
                "agent": selection.agent.name,
                "source": selection.source,
                "strategy": decision.strategy.value if decision else None,
                "confidence": decision.confidence if decision else None,
                "matched_signals": list(decision.matched_signals) if decision else [],
            }
        )
    else:
        out.print_selection(selection)


def ask_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Request for the assistant"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Use this agent, skip routing"),
    no_routing: bool = typer.Option(False, "--no-routing", help="Use the default agent"),
    strategy: Optional[RoutingStrategy] = typer.Option(None, "--strategy", "-s", help="Routing strategy"),
):
    """Route a request and run one agent turn (following handoffs)."""
    out = ConductorConsole()
    orchestrator = runtime.create_orchestrator(ctx)

    out.console.print("[dim]Working... (Ctrl-C cancels)[/dim]")
    try:
        result = runtime.run_cancellable(
            orchestrator,
            lambda: orchestrator.ask(text, agent, no_routing, strategy),
        )
    except ConductorError as e:
        out.print_error(str(e))
        raise typer.Exit(1)

    out.print_ask_result(result)
    if not result.result.success:
        raise typer.Exit(1)
