"""
Protocol for the model service.

The orchestration core never talks to a language-model backend directly. It
needs two capabilities: classifying a request against candidate agents, and
streaming one model turn as a finite sequence of TurnEvents.
"""

from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from conductor.core.domain.agents import AgentDefinition
    from conductor.core.domain.events import TurnEvent
    from conductor.core.domain.routing import RouteDecision


class ModelServiceProtocol(Protocol):
    """Opaque request/response collaborator wrapping the language model."""

    async def classify(
        self,
        text: str,
        agents: Sequence["AgentDefinition"],
    ) -> "RouteDecision | None":
        """
        Pick the agent best suited for text.

        Returns:
            A decision naming one of the candidate agents, or None when the
            model could not decide.
        """
        ...

    def generate_turn(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator["TurnEvent"]:
        """
        Stream one model turn.

        Args:
            messages: OpenAI-style conversation messages
            tools: OpenAI function-calling tool schemas

        Yields:
            ContentEvent, ToolCallRequestEvent, FinishedEvent or ErrorEvent
        """
        ...
