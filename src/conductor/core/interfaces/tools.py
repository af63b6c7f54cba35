"""
Protocols for tools and the tool execution service.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from conductor.core.domain.tool_calls import ToolCall


class ToolProtocol(Protocol):
    """
    A single callable tool.

    execute() returns a result dictionary with at least a "success" key and
    either "output" (or other result fields) or "error".
    """

    @property
    def name(self) -> str:
        ...

    @property
    def description(self) -> str:
        ...

    @property
    def parameters_schema(self) -> dict[str, Any]:
        ...

    @property
    def requires_approval(self) -> bool:
        ...

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        ...


class ToolExecutorProtocol(Protocol):
    """Tool execution service used by the ToolCallTracker."""

    def has_tool(self, name: str) -> bool:
        ...

    def requires_approval(self, call: "ToolCall") -> bool:
        """Whether the call must pass approval before it may execute."""
        ...

    def tool_schemas(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """OpenAI function-calling schemas, optionally restricted to names."""
        ...

    async def execute(self, call: "ToolCall") -> dict[str, Any]:
        """Run the call; only invoked once the call has left awaiting_approval."""
        ...
