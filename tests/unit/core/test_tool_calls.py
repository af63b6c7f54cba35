"""Unit Tests for the tool call lifecycle and the ToolCallTracker."""

import asyncio
import json

import pytest

from conductor.core.domain.agents import ToolPolicy
from conductor.core.domain.errors import InvalidToolCallTransition
from conductor.core.domain.tool_calls import (
    ApprovalMode,
    StreamingState,
    ToolCall,
    ToolCallStatus,
    ToolCallTracker,
    mode_releases,
    summarize_calls,
)


@pytest.fixture
def tracker(tool_executor, audit_sink):
    return ToolCallTracker(tool_executor, audit_sink=audit_sink)


class TestToolCall:
    """Tests for the state machine itself."""

    def test_allowed_path(self):
        call = ToolCall(call_id="c1", name="read_file")
        for status in (ToolCallStatus.SCHEDULED, ToolCallStatus.EXECUTING, ToolCallStatus.SUCCESS):
            call.transition(status)
        assert call.terminal

    def test_terminal_states_are_final(self):
        call = ToolCall(call_id="c1", name="read_file", status=ToolCallStatus.SUCCESS)
        with pytest.raises(InvalidToolCallTransition):
            call.transition(ToolCallStatus.CANCELLED)

    def test_approval_cannot_be_skipped_backwards(self):
        call = ToolCall(call_id="c1", name="x", status=ToolCallStatus.EXECUTING)
        with pytest.raises(InvalidToolCallTransition):
            call.transition(ToolCallStatus.AWAITING_APPROVAL)

    @pytest.mark.parametrize(
        "mode,tool,released",
        [
            (ApprovalMode.DEFAULT, "replace", False),
            (ApprovalMode.AUTO_EDIT, "replace", True),
            (ApprovalMode.AUTO_EDIT, "write_file", True),
            (ApprovalMode.AUTO_EDIT, "run_shell", False),
            (ApprovalMode.YOLO, "run_shell", True),
        ],
    )
    def test_mode_releases(self, mode, tool, released):
        assert mode_releases(mode, tool) is released


class TestValidation:
    """Tests for track()."""

    def test_unknown_tool_errors_immediately(self, tracker):
        call = tracker.track("c1", "nope", turn_id="t")
        assert call.status == ToolCallStatus.ERROR
        assert "not found" in call.error

    def test_policy_denial_errors(self, tracker):
        policy = ToolPolicy(deny=frozenset({"read_file"}))
        call = tracker.track("c1", "read_file", turn_id="t", policy=policy)
        assert call.status == ToolCallStatus.ERROR
        assert "not permitted" in call.error

    def test_policy_applies_per_call(self, tracker):
        denied = tracker.track("c1", "read_file", turn_id="t1", policy=ToolPolicy(deny=frozenset({"read_file"})))
        allowed = tracker.track("c2", "read_file", turn_id="t2")
        assert denied.status == ToolCallStatus.ERROR
        assert allowed.status == ToolCallStatus.SCHEDULED

    def test_valid_call_is_scheduled(self, tracker, audit_sink):
        call = tracker.track("c1", "read_file", {"path": "a"}, turn_id="t")
        assert call.status == ToolCallStatus.SCHEDULED
        transitions = [e.payload["status"] for e in audit_sink.of_kind("tool_call.transition")]
        assert transitions == ["validating", "scheduled"]


class TestExecution:
    """Tests for scheduling, approval and settling."""

    @pytest.mark.asyncio
    async def test_calls_without_approval_execute(self, tracker):
        tracker.track("c1", "read_file", turn_id="t")
        tracker.schedule("t")
        await tracker.wait_settled("t")

        call = tracker.get("c1")
        assert call.status == ToolCallStatus.SUCCESS
        assert call.result == {"success": True, "content": "hello"}

    @pytest.mark.asyncio
    async def test_approval_is_required_and_honored(self, tracker, tool_executor):
        tracker.track("c1", "replace", turn_id="t")
        tracker.schedule("t")

        assert tracker.get("c1").status == ToolCallStatus.AWAITING_APPROVAL
        assert tracker.streaming_state == StreamingState.WAITING_FOR_CONFIRMATION
        assert tool_executor.executed == []

        await tracker.approve("c1")
        assert tracker.get("c1").status == ToolCallStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_approve_requires_waiting_call(self, tracker):
        tracker.track("c1", "read_file", turn_id="t")
        tracker.schedule("t")
        await tracker.wait_settled("t")
        with pytest.raises(InvalidToolCallTransition):
            await tracker.approve("c1")

    @pytest.mark.asyncio
    async def test_auto_edit_releases_only_edit_tools(self, tracker):
        tracker.track("c1", "replace", turn_id="t")
        tracker.track("c2", "run_shell", turn_id="t")
        tracker.schedule("t")

        released = await tracker.set_approval_mode(ApprovalMode.AUTO_EDIT)

        assert [c.call_id for c in released] == ["c1"]
        assert tracker.get("c1").status == ToolCallStatus.SUCCESS
        assert tracker.get("c2").status == ToolCallStatus.AWAITING_APPROVAL

    @pytest.mark.asyncio
    async def test_yolo_releases_everything_waiting(self, tracker):
        tracker.track("c1", "replace", turn_id="t")
        tracker.track("c2", "run_shell", turn_id="t")
        tracker.schedule("t")

        await tracker.set_approval_mode(ApprovalMode.YOLO)
        assert tracker.is_settled("t")

    @pytest.mark.asyncio
    async def test_mode_covers_calls_scheduled_later(self, tracker, tool_executor):
        await tracker.set_approval_mode(ApprovalMode.AUTO_EDIT)
        tracker.track("c1", "replace", turn_id="t")
        tracker.schedule("t")
        await tracker.wait_settled("t")
        assert tool_executor.executed == ["c1"]

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_error(self, tracker, tool_executor):
        def explode(call):
            raise OSError("disk gone")

        tool_executor.add("explode", explode)
        tracker.track("c1", "explode", turn_id="t")
        tracker.schedule("t")
        await tracker.wait_settled("t")

        call = tracker.get("c1")
        assert call.status == ToolCallStatus.ERROR
        assert "Tool 'explode' failed: disk gone" in call.error

    @pytest.mark.asyncio
    async def test_unsuccessful_result_is_error(self, tracker, tool_executor):
        tool_executor.add("grep", {"success": False, "error": "no match"})
        tracker.track("c1", "grep", turn_id="t")
        tracker.schedule("t")
        await tracker.wait_settled("t")
        assert tracker.get("c1").error == "no match"

    @pytest.mark.asyncio
    async def test_cancel_during_execution_discards_result(self, tracker, tool_executor):
        gate = asyncio.Event()
        tool_executor.gates["read_file"] = gate
        tracker.track("c1", "read_file", turn_id="t")
        tracker.schedule("t")
        await asyncio.sleep(0)
        assert tracker.get("c1").status == ToolCallStatus.EXECUTING

        assert tracker.cancel_all("t", reason="stop") == 1
        gate.set()
        await asyncio.sleep(0)

        call = tracker.get("c1")
        assert call.status == ToolCallStatus.CANCELLED
        assert call.result is None


class TestResponses:
    """Tests for collect_responses() and ToolResponseBatch."""

    @pytest.mark.asyncio
    async def test_nothing_is_collected_while_pending(self, tracker):
        tracker.track("c1", "read_file", turn_id="t")
        tracker.track("c2", "replace", turn_id="t")
        tracker.schedule("t")
        await asyncio.sleep(0)
        assert tracker.collect_responses("t") is None

    @pytest.mark.asyncio
    async def test_collected_exactly_once(self, tracker):
        tracker.track("c1", "read_file", turn_id="t1")
        tracker.schedule("t1")
        await tracker.wait_settled("t1")

        batch = tracker.collect_responses("t1")
        assert [c.call_id for c in batch.calls] == ["c1"]
        assert all(c.response_submitted for c in batch.calls)
        assert tracker.collect_responses("t1") is None

        tracker.track("c2", "read_file", turn_id="t2")
        tracker.schedule("t2")
        await tracker.wait_settled("t2")
        assert [c.call_id for c in tracker.collect_responses("t2").calls] == ["c2"]

    def test_all_declined_batch_does_not_continue(self, tracker):
        tracker.track("c1", "replace", turn_id="t")
        tracker.track("c2", "run_shell", turn_id="t")
        tracker.schedule("t")
        tracker.decline("c1")
        tracker.decline("c2")

        batch = tracker.collect_responses("t")
        assert batch.all_cancelled
        assert not batch.should_continue
        assert json.loads(batch.to_messages()[0]["content"])["cancelled"] is True

    def test_client_initiated_calls_are_not_sent(self, tracker):
        tracker.track("c1", "nope", turn_id="t", client_initiated=True)
        batch = tracker.collect_responses("t")
        assert batch.sendable == []
        assert not batch.should_continue

    @pytest.mark.asyncio
    async def test_tool_messages(self, tracker):
        tracker.track("c1", "read_file", turn_id="t")
        tracker.track("c2", "nope", turn_id="t")
        tracker.schedule("t")
        await tracker.wait_settled("t")

        messages = tracker.collect_responses("t").to_messages()
        assert [m["tool_call_id"] for m in messages] == ["c1", "c2"]
        assert messages[0]["role"] == "tool"
        assert json.loads(messages[1]["content"])["success"] is False

    def test_summarize_calls(self):
        calls = [
            ToolCall("a", "x", status=ToolCallStatus.SUCCESS),
            ToolCall("b", "x", status=ToolCallStatus.SUCCESS),
            ToolCall("c", "x", status=ToolCallStatus.ERROR),
        ]
        assert summarize_calls(calls) == {"success": 2, "error": 1}
