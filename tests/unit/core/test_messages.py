"""Unit Tests for the conversation message helpers."""

import json

from conductor.core.domain.messages import assistant_tool_calls_to_message, tool_result_to_message
from conductor.core.domain.tool_calls import ToolCall


def test_assistant_message_lists_calls():
    message = assistant_tool_calls_to_message([ToolCall(call_id="c1", name="read_file", args={"path": "a"})])
    assert message["content"] is None
    call = message["tool_calls"][0]
    assert call["id"] == "c1"
    assert json.loads(call["function"]["arguments"]) == {"path": "a"}


def test_tool_message_keeps_small_results():
    message = tool_result_to_message("c1", "read_file", {"success": True, "content": "short"})
    assert message["role"] == "tool"
    assert message["tool_call_id"] == "c1"
    assert json.loads(message["content"]) == {"success": True, "content": "short"}


def test_large_output_is_truncated():
    message = tool_result_to_message("c1", "run_shell", {"stdout": "x" * 50}, max_output_chars=10)
    stdout = json.loads(message["content"])["stdout"]
    assert stdout.startswith("x" * 10)
    assert "TRUNCATED - 40 more chars" in stdout


def test_large_structured_field_is_truncated():
    message = tool_result_to_message("c1", "search", {"data": list(range(100))}, max_output_chars=20)
    assert "TRUNCATED" in json.loads(message["content"])["data"]
