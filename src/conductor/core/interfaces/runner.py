"""
Protocol for the agent execution primitive.

Handoffs and workflow steps both end up running "one agent on one prompt".
The application layer implements this on top of the TurnProcessor; tests
substitute simple fakes.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from conductor.core.domain.agents import AgentDefinition


@dataclass
class AgentRunResult:
    """
    Outcome of running one agent on one prompt.

    Attributes:
        agent: Name of the agent that produced the result
        output: Final assistant text
        data: Structured details (tool call counts, turn status, ...)
        success: False when the agent turn ended in an error
        error: Error message when success is False
        handoff_to: Agent the model asked to transfer the task to, if any
        handoff_reason: Why the transfer was requested
        messages: Conversation produced by the turn (used as handoff context)
    """

    agent: str
    output: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: str | None = None
    handoff_to: str | None = None
    handoff_reason: str = ""
    messages: list[dict[str, Any]] = field(default_factory=list)


class AgentRunnerProtocol(Protocol):
    async def run(
        self,
        agent: "AgentDefinition",
        prompt: str,
        context: list[dict[str, Any]] | None = None,
    ) -> AgentRunResult:
        ...
