"""
Conversation Messages

Helpers building the OpenAI-style chat messages the turn loop appends to the
conversation: the assistant message carrying tool calls, and one tool message
per tool result.
"""

import json
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from conductor.core.domain.tool_calls import ToolCall

MAX_TOOL_OUTPUT_CHARS = 20000
LARGE_RESULT_FIELDS = ("output", "result", "content", "stdout", "stderr", "data")


def system_message(content: str) -> dict[str, Any]:
    return {"role": "system", "content": content}


def user_message(content: str) -> dict[str, Any]:
    return {"role": "user", "content": content}


def assistant_message(content: str) -> dict[str, Any]:
    return {"role": "assistant", "content": content}


def assistant_tool_calls_to_message(
    calls: Iterable["ToolCall"],
    content: str | None = None,
) -> dict[str, Any]:
    """
    Assistant message announcing tool calls.

    It has to precede the tool result messages in the history, otherwise the
    backend rejects the results.
    """
    return {
        "role": "assistant",
        "content": content or None,
        "tool_calls": [
            {
                "id": call.call_id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": json.dumps(call.args, ensure_ascii=False, default=str),
                },
            }
            for call in calls
        ],
    }


def tool_result_to_message(
    tool_call_id: str,
    tool_name: str,
    result: dict[str, Any],
    max_output_chars: int = MAX_TOOL_OUTPUT_CHARS,
) -> dict[str, Any]:
    """
    Tool message for one result; large fields are truncated to max_output_chars.
    """
    content = json.dumps(
        _truncate_tool_result(result, max_output_chars), ensure_ascii=False, default=str
    )
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "name": tool_name,
        "content": content,
    }


def _truncate_tool_result(result: dict[str, Any], max_chars: int) -> dict[str, Any]:
    truncated = result.copy()
    for key in LARGE_RESULT_FIELDS:
        if key not in truncated:
            continue
        value = truncated[key]
        if isinstance(value, (list, dict)):
            value = json.dumps(value, ensure_ascii=False, default=str)
            if len(value) <= max_chars:
                continue
        if isinstance(value, str) and len(value) > max_chars:
            overflow = len(value) - max_chars
            truncated[key] = value[:max_chars] + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
    return truncated
