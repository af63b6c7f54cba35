"""
Tool-Call Lifecycle

Every tool call the model issues is tracked through a small state machine:

    validating -> scheduled -> awaiting_approval -> executing -> success
                           \\-------------------> executing -> error
    validating -> error                                      -> cancelled
    (any pre-terminal state) -> cancelled

Only the ToolCallTracker changes a call's status. Results of one model turn
are handed back to the model exactly once, as a single ToolResponseBatch,
after every call of that turn has reached a terminal state.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from conductor.core.domain.agents import ToolPolicy
from conductor.core.domain.errors import InvalidToolCallTransition, ToolExecutionError
from conductor.core.domain.events import emit
from conductor.core.domain.messages import tool_result_to_message
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.tools import ToolExecutorProtocol


class ToolCallStatus(str, Enum):
    VALIDATING = "validating"
    SCHEDULED = "scheduled"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[ToolCallStatus, frozenset[ToolCallStatus]] = {
    ToolCallStatus.VALIDATING: frozenset(
        {ToolCallStatus.SCHEDULED, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED}
    ),
    ToolCallStatus.SCHEDULED: frozenset(
        {ToolCallStatus.AWAITING_APPROVAL, ToolCallStatus.EXECUTING, ToolCallStatus.CANCELLED}
    ),
    ToolCallStatus.AWAITING_APPROVAL: frozenset(
        {ToolCallStatus.EXECUTING, ToolCallStatus.CANCELLED}
    ),
    ToolCallStatus.EXECUTING: frozenset(
        {ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED}
    ),
    ToolCallStatus.SUCCESS: frozenset(),
    ToolCallStatus.ERROR: frozenset(),
    ToolCallStatus.CANCELLED: frozenset(),
}


class ApprovalMode(str, Enum):
    """How tool calls that need approval are released."""

    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"
    YOLO = "yolo"


EDIT_TOOL_NAMES = frozenset({"replace", "write_file", "edit"})


def mode_releases(mode: ApprovalMode, tool_name: str) -> bool:
    """Whether mode approves a call to tool_name without asking."""
    if mode == ApprovalMode.YOLO:
        return True
    if mode == ApprovalMode.AUTO_EDIT:
        return tool_name in EDIT_TOOL_NAMES
    return False


class StreamingState(str, Enum):
    IDLE = "idle"
    RESPONDING = "responding"
    WAITING_FOR_CONFIRMATION = "waiting_for_confirmation"


@dataclass
class ToolCall:
    """
    One tool invocation requested by the model (or by the client).

    Attributes:
        call_id: Id assigned by the model
        name: Tool name
        args: Tool arguments
        turn_id: Model turn the call belongs to
        status: Lifecycle state
        response_submitted: Set once the result was handed back to the model
        result: Result dictionary returned by the tool
        error: Error message for error/cancelled calls
        client_initiated: Issued by the client; tracked but never sent to the model
    """

    call_id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    turn_id: str = ""
    status: ToolCallStatus = ToolCallStatus.VALIDATING
    response_submitted: bool = False
    result: dict[str, Any] | None = None
    error: str | None = None
    client_initiated: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, target: ToolCallStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidToolCallTransition(self.call_id, self.status, target)
        self.status = target

    def response_payload(self) -> dict[str, Any]:
        """What the model sees for this call."""
        if self.status == ToolCallStatus.SUCCESS:
            return self.result or {"success": True}
        if self.status == ToolCallStatus.CANCELLED:
            return {"success": False, "error": self.error or "Tool call was cancelled", "cancelled": True}
        payload = dict(self.result or {})
        payload["success"] = False
        payload["error"] = self.error or payload.get("error") or "Tool call failed"
        return payload


@dataclass
class ToolResponseBatch:
    """All settled calls of one model turn, submitted together."""

    turn_id: str
    calls: list[ToolCall]

    @property
    def sendable(self) -> list[ToolCall]:
        return [call for call in self.calls if not call.client_initiated]

    @property
    def all_cancelled(self) -> bool:
        sendable = self.sendable
        return bool(sendable) and all(c.status == ToolCallStatus.CANCELLED for c in sendable)

    @property
    def should_continue(self) -> bool:
        """Whether the model should be prompted again with these results."""
        return bool(self.sendable) and not self.all_cancelled

    def to_messages(self) -> list[dict[str, Any]]:
        return [
            tool_result_to_message(call.call_id, call.name, call.response_payload())
            for call in self.sendable
        ]


class ToolCallTracker:
    """
    Owns the tool calls of one session.

    Args:
        executor: Tool execution service
        approval_mode: Initial approval mode
        audit_sink: Receives tool_call.transition events
    """

    def __init__(
        self,
        executor: ToolExecutorProtocol,
        approval_mode: ApprovalMode = ApprovalMode.DEFAULT,
        audit_sink: AuditSinkProtocol | None = None,
    ):
        self.executor = executor
        self.approval_mode = ApprovalMode(approval_mode)
        self.audit_sink = audit_sink
        self._calls: dict[str, ToolCall] = {}
        self._tasks: set[asyncio.Task] = set()
        self._changed = asyncio.Event()
        self.logger = structlog.get_logger().bind(component="tool_call_tracker")

    # ----- queries -----

    def get(self, call_id: str) -> ToolCall | None:
        return self._calls.get(call_id)

    def calls(self, turn_id: str | None = None) -> list[ToolCall]:
        return [c for c in self._calls.values() if turn_id is None or c.turn_id == turn_id]

    def awaiting_approval(self, turn_id: str | None = None) -> list[ToolCall]:
        return [c for c in self.calls(turn_id) if c.status == ToolCallStatus.AWAITING_APPROVAL]

    def is_settled(self, turn_id: str) -> bool:
        return all(call.terminal for call in self.calls(turn_id))

    @property
    def streaming_state(self) -> StreamingState:
        calls = list(self._calls.values())
        if any(c.status == ToolCallStatus.AWAITING_APPROVAL for c in calls):
            return StreamingState.WAITING_FOR_CONFIRMATION
        if any(not c.terminal or not c.response_submitted for c in calls):
            return StreamingState.RESPONDING
        return StreamingState.IDLE

    def needs_approval(self, call: ToolCall) -> bool:
        return self.executor.requires_approval(call) and not mode_releases(
            self.approval_mode, call.name
        )

    # ----- lifecycle -----

    def track(
        self,
        call_id: str,
        name: str,
        args: dict[str, Any] | None = None,
        turn_id: str = "",
        client_initiated: bool = False,
        policy: ToolPolicy | None = None,
    ) -> ToolCall:
        """
        Register a requested call and validate it (validating -> scheduled | error).

        policy is the requesting agent's tool policy; it travels with the call
        because agents of one parallel group share this tracker.
        """
        call = ToolCall(
            call_id=call_id,
            name=name,
            args=dict(args or {}),
            turn_id=turn_id,
            client_initiated=client_initiated,
        )
        self._calls[call_id] = call
        self._emit_transition(call, None)

        if not self.executor.has_tool(name):
            self._finish(call, ToolCallStatus.ERROR, error=f"Tool '{name}' not found")
        elif policy is not None and not policy.permits(name):
            self._finish(call, ToolCallStatus.ERROR, error=f"Tool '{name}' is not permitted for this agent")
        else:
            self._transition(call, ToolCallStatus.SCHEDULED)
        return call

    def schedule(self, turn_id: str) -> None:
        """
        Move every scheduled call of turn_id on: calls that need approval wait
        for it, all others start executing concurrently.
        """
        for call in self.calls(turn_id):
            if call.status != ToolCallStatus.SCHEDULED:
                continue
            if self.needs_approval(call):
                self._transition(call, ToolCallStatus.AWAITING_APPROVAL)
            else:
                self._start(call)

    async def approve(self, call_id: str) -> ToolCall:
        """Release a call awaiting approval and execute it."""
        call = self._require(call_id)
        if call.status != ToolCallStatus.AWAITING_APPROVAL:
            raise InvalidToolCallTransition(call_id, call.status, ToolCallStatus.EXECUTING)
        self.logger.info("tool_call.approved", call_id=call_id, tool=call.name)
        await self._execute(call)
        return call

    def decline(self, call_id: str, reason: str = "Tool call declined by user") -> ToolCall:
        call = self._require(call_id)
        self._finish(call, ToolCallStatus.CANCELLED, error=reason)
        return call

    async def set_approval_mode(self, mode: ApprovalMode) -> list[ToolCall]:
        """
        Switch the approval mode and release, one after the other, every
        waiting call the new mode covers.

        Returns:
            The released calls.
        """
        self.approval_mode = ApprovalMode(mode)
        self.logger.info("tool_call.approval_mode_changed", mode=self.approval_mode.value)
        released = [
            call for call in self.awaiting_approval()
            if mode_releases(self.approval_mode, call.name)
        ]
        for call in released:
            # An earlier release may have been followed by a cancel
            if call.status == ToolCallStatus.AWAITING_APPROVAL:
                await self._execute(call)
        return released

    def cancel_all(self, turn_id: str | None = None, reason: str = "Tool call cancelled") -> int:
        """Cancel every pre-terminal call; returns how many were cancelled."""
        cancelled = 0
        for call in self.calls(turn_id):
            if not call.terminal:
                self._finish(call, ToolCallStatus.CANCELLED, error=reason)
                cancelled += 1
        if cancelled:
            self.logger.info("tool_call.cancelled_all", turn_id=turn_id, count=cancelled)
        return cancelled

    async def wait_settled(self, turn_id: str) -> None:
        """Wait until every call of turn_id is terminal."""
        while not self.is_settled(turn_id):
            self._changed.clear()
            await self._changed.wait()

    def change_event(self) -> asyncio.Event:
        """A cleared event that is set on the next status change."""
        self._changed.clear()
        return self._changed

    def collect_responses(self, turn_id: str) -> ToolResponseBatch | None:
        """
        Hand out the settled calls of turn_id as one batch.

        Returns None while any call of the turn is still pending or when
        nothing is left to submit. Collected calls are marked submitted and
        dropped, so a second call returns None.
        """
        calls = [c for c in self.calls(turn_id) if not c.response_submitted]
        if not calls or not all(c.terminal for c in calls):
            return None

        for call in calls:
            call.response_submitted = True
            del self._calls[call.call_id]

        batch = ToolResponseBatch(turn_id=turn_id, calls=calls)
        self.logger.info(
            "tool_call.responses_collected",
            turn_id=turn_id,
            count=len(calls),
            sendable=len(batch.sendable),
            all_cancelled=batch.all_cancelled,
        )
        self._changed.set()
        return batch

    # ----- internals -----

    def _require(self, call_id: str) -> ToolCall:
        call = self._calls.get(call_id)
        if call is None:
            raise KeyError(f"Unknown tool call '{call_id}'")
        return call

    def _start(self, call: ToolCall) -> None:
        task = asyncio.create_task(self._execute(call))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, call: ToolCall) -> None:
        if call.status == ToolCallStatus.CANCELLED:
            return
        self._transition(call, ToolCallStatus.EXECUTING)
        try:
            result = await self.executor.execute(call)
        except Exception as e:
            error = ToolExecutionError(call.name, str(e))
            self.logger.error(
                "tool_call.execution_failed",
                call_id=call.call_id,
                tool=call.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = {"success": False, "error": str(error)}

        if call.status == ToolCallStatus.CANCELLED:
            self.logger.info("tool_call.result_discarded", call_id=call.call_id, tool=call.name)
            return

        if result.get("success"):
            self._finish(call, ToolCallStatus.SUCCESS, result=result)
        else:
            self._finish(
                call,
                ToolCallStatus.ERROR,
                result=result,
                error=str(result.get("error") or "Tool call failed"),
            )

    def _finish(
        self,
        call: ToolCall,
        status: ToolCallStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        call.transition(status)
        call.result = result
        call.error = error
        self._emit_transition(call, error)
        self._changed.set()

    def _transition(self, call: ToolCall, status: ToolCallStatus) -> None:
        call.transition(status)
        self._emit_transition(call, None)
        self._changed.set()

    def _emit_transition(self, call: ToolCall, error: str | None) -> None:
        self.logger.debug(
            "tool_call.transition",
            call_id=call.call_id,
            tool=call.name,
            status=call.status.value,
            error=error,
        )
        emit(
            self.audit_sink,
            "tool_call.transition",
            call_id=call.call_id,
            tool=call.name,
            turn_id=call.turn_id,
            status=call.status.value,
            error=error,
        )


def summarize_calls(calls: Iterable[ToolCall]) -> dict[str, int]:
    """Count calls per status."""
    counts: dict[str, int] = {}
    for call in calls:
        counts[call.status.value] = counts.get(call.status.value, 0) + 1
    return counts
