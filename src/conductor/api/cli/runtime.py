"""Shared CLI plumbing: logging, settings, orchestrator creation, Ctrl-C."""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import structlog
import typer
from rich.console import Console
from rich.prompt import Prompt

from conductor.application.factory import build_orchestrator
from conductor.application.orchestrator import Orchestrator
from conductor.application.settings import ConductorSettings
from conductor.core.domain.errors import ConductorError
from conductor.core.domain.tool_calls import ToolCall
from conductor.core.domain.turn import ApprovalDecision

T = TypeVar("T")

DEFAULT_CONFIG_PATH = Path("conductor.yaml")

APPROVAL_CHOICES = {
    "y": ApprovalDecision.APPROVE,
    "n": ApprovalDecision.DECLINE,
    "e": ApprovalDecision.APPROVE_EDITS,
    "a": ApprovalDecision.APPROVE_ALL,
}


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def load_settings(ctx: typer.Context) -> ConductorSettings:
    opts = ctx.obj or {}
    config_path = opts.get("config") or DEFAULT_CONFIG_PATH
    settings = ConductorSettings.load_from_file(Path(config_path))

    overrides: dict[str, Any] = {}
    if opts.get("agents_file"):
        overrides["agents_file"] = str(opts["agents_file"])
    if opts.get("workflows_file"):
        overrides["workflows_file"] = str(opts["workflows_file"])
    if opts.get("debug"):
        overrides["debug_mode"] = True
    return settings.model_copy(update=overrides) if overrides else settings


async def prompt_approval(call: ToolCall) -> ApprovalDecision:
    """Ask on the terminal, from a worker thread, whether a tool call may run."""
    answer = await asyncio.to_thread(
        Prompt.ask,
        f"Allow [cyan]{call.name}[/cyan] with {call.args}? "
        "(y)es / (n)o / allow all (e)dits / allow (a)ll",
        choices=list(APPROVAL_CHOICES),
        default="y",
    )
    return APPROVAL_CHOICES[answer]


def create_orchestrator(ctx: typer.Context) -> Orchestrator:
    """Build the orchestrator; invalid definitions end the command with exit code 1."""
    try:
        return build_orchestrator(load_settings(ctx), approval_handler=prompt_approval)
    except ConductorError as e:
        Console(stderr=True).print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def run_cancellable(
    orchestrator: Orchestrator,
    operation: Callable[[], Awaitable[T]],
) -> T:
    """Run operation; Ctrl-C cancels it cooperatively instead of killing the process."""

    async def main() -> T:
        loop = asyncio.get_running_loop()
        installed = True
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; Ctrl-C aborts the process
            installed = False
            structlog.get_logger().debug("cli.signal_handler_unavailable")
        try:
            return await operation()
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(main())
