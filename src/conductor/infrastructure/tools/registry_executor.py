"""
Tool registry and executor.

Holds the tool instances of a session, exposes their OpenAI function-calling
schemas and executes tracked calls.
"""

from collections.abc import Iterable
from typing import Any

import structlog

from conductor.core.domain.tool_calls import ToolCall
from conductor.core.interfaces.tools import ToolProtocol


def tools_to_openai_format(tools: Iterable[ToolProtocol]) -> list[dict[str, Any]]:
    """
    Convert tools to the OpenAI function calling format:

        {"type": "function",
         "function": {"name": ..., "description": ..., "parameters": {...}}}
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema,
            },
        }
        for tool in tools
    ]


class ToolRegistryExecutor:
    """ToolExecutorProtocol implementation over a fixed set of tools."""

    def __init__(self, tools: Iterable[ToolProtocol] = ()):
        self._tools: dict[str, ToolProtocol] = {}
        for tool in tools:
            self.register(tool)
        self.logger = structlog.get_logger().bind(component="tool_executor")

    def register(self, tool: ToolProtocol) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def requires_approval(self, call: ToolCall) -> bool:
        tool = self._tools.get(call.name)
        return bool(tool and tool.requires_approval)

    def tool_schemas(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        selected = set(names) if names is not None else None
        return tools_to_openai_format(
            tool for name, tool in self._tools.items() if selected is None or name in selected
        )

    async def execute(self, call: ToolCall) -> dict[str, Any]:
        tool = self._tools.get(call.name)
        if tool is None:
            return {"success": False, "error": f"Tool '{call.name}' not found"}

        self.logger.info("tool.execute", tool=call.name, call_id=call.call_id)
        result = await tool.execute(**call.args)
        if not isinstance(result, dict):
            result = {"success": True, "output": result}
        return result
