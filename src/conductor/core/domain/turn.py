"""
Turn Processing

Drives one agent turn: a single consumer loop over the finite event sequence
of each model call. Tool call requests are tracked, executed (after approval
where needed) and their results are fed back to the model until it answers
without requesting tools.

Terminal states of a turn: completed, error, cancelled, max_continuations.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from conductor.core.domain.agents import ToolPolicy
from conductor.core.domain.cancellation import CancellationToken
from conductor.core.domain.events import (
    ContentEvent,
    ErrorEvent,
    FinishedEvent,
    ToolCallRequestEvent,
    emit,
)
from conductor.core.domain.messages import assistant_message, assistant_tool_calls_to_message
from conductor.core.domain.tool_calls import (
    ApprovalMode,
    ToolCall,
    ToolCallStatus,
    ToolCallTracker,
)
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.model import ModelServiceProtocol

DEFAULT_MAX_CONTINUATIONS = 30


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"
    MAX_CONTINUATIONS = "max_continuations"


class ApprovalDecision(str, Enum):
    """Answer to an approval prompt."""

    APPROVE = "approve"
    APPROVE_EDITS = "approve_edits"  # approve and switch to auto_edit
    APPROVE_ALL = "approve_all"  # approve and switch to yolo
    DECLINE = "decline"


ApprovalHandler = Callable[[ToolCall], Awaitable[ApprovalDecision]]


@dataclass
class TurnResult:
    """
    Outcome of one agent turn.

    Attributes:
        status: Terminal state
        output: Text of the last model answer
        messages: Messages appended to the conversation during the turn
        tool_calls: Every call settled during the turn
        intercepted: Requests for intercepted tools, not executed
        continuations: Times the model was re-prompted with tool results
        error: Error message for error turns
    """

    status: TurnStatus
    output: str = ""
    messages: list[dict[str, Any]] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    intercepted: list[ToolCallRequestEvent] = field(default_factory=list)
    continuations: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TurnStatus.COMPLETED


class TurnProcessor:
    """
    Runs model turns against the session's ToolCallTracker.

    Args:
        model_service: Streams model turns
        tracker: Tool call lifecycle owner
        audit_sink: Receives turn.finished events
        max_continuations: Maximum re-prompts with tool results per turn
        approval_handler: Asked for every call awaiting approval; without one
            the processor waits for an external approve()/mode switch
        intercepted_tools: Tool names the caller handles itself; requests for
            them end the turn instead of being executed
    """

    def __init__(
        self,
        model_service: ModelServiceProtocol,
        tracker: ToolCallTracker,
        audit_sink: AuditSinkProtocol | None = None,
        max_continuations: int = DEFAULT_MAX_CONTINUATIONS,
        approval_handler: ApprovalHandler | None = None,
        intercepted_tools: Collection[str] = (),
    ):
        self.model_service = model_service
        self.tracker = tracker
        self.audit_sink = audit_sink
        self.max_continuations = max_continuations
        self.approval_handler = approval_handler
        self.intercepted_tools = frozenset(intercepted_tools)
        self.logger = structlog.get_logger().bind(component="turn_processor")

    async def run(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        cancel: CancellationToken | None = None,
        tool_policy: ToolPolicy | None = None,
    ) -> TurnResult:
        """
        Run one turn on a copy of messages.

        Args:
            messages: Conversation so far (system prompt included)
            tools: OpenAI tool schemas offered to the model
            cancel: Stops further model calls and tool dispatch when cancelled
            tool_policy: Validates every call requested during this turn

        Returns:
            TurnResult; errors are reported in the result, never raised.
        """
        conversation = list(messages)
        result = TurnResult(status=TurnStatus.COMPLETED)
        start = len(conversation)

        def finish(status: TurnStatus, error: str | None = None) -> TurnResult:
            result.status = status
            result.error = error
            result.messages = conversation[start:]
            log = self.logger.info if status == TurnStatus.COMPLETED else self.logger.warning
            log(
                "turn.finished",
                status=status.value,
                continuations=result.continuations,
                tool_calls=len(result.tool_calls),
                error=error,
            )
            emit(
                self.audit_sink,
                "turn.finished",
                status=status.value,
                continuations=result.continuations,
                error=error,
            )
            return result

        while True:
            if cancel is not None and cancel.cancelled:
                return finish(TurnStatus.CANCELLED, cancel.reason)

            turn_id = uuid.uuid4().hex[:12]
            text_parts: list[str] = []
            requests: list[ToolCallRequestEvent] = []
            stream_error: str | None = None

            try:
                async for event in self.model_service.generate_turn(conversation, tools or []):
                    if cancel is not None and cancel.cancelled:
                        break
                    if isinstance(event, ContentEvent):
                        text_parts.append(event.text)
                    elif isinstance(event, ToolCallRequestEvent):
                        if event.name in self.intercepted_tools:
                            result.intercepted.append(event)
                        else:
                            requests.append(event)
                    elif isinstance(event, ErrorEvent):
                        stream_error = event.message
                        break
                    elif isinstance(event, FinishedEvent):
                        break
            except Exception as e:
                self.logger.error(
                    "turn.model_failed", turn_id=turn_id, error=str(e), error_type=type(e).__name__
                )
                stream_error = str(e)

            text = "".join(text_parts)
            if text:
                result.output = text

            if cancel is not None and cancel.cancelled:
                return finish(TurnStatus.CANCELLED, cancel.reason)
            if stream_error is not None:
                if text:
                    conversation.append(assistant_message(text))
                return finish(TurnStatus.ERROR, stream_error)

            if not requests:
                if text:
                    conversation.append(assistant_message(text))
                return finish(TurnStatus.COMPLETED)

            calls = [
                self.tracker.track(r.call_id, r.name, r.args, turn_id=turn_id, policy=tool_policy)
                for r in requests
            ]
            conversation.append(assistant_tool_calls_to_message(calls, text))
            self.tracker.schedule(turn_id)
            await self._settle(turn_id, cancel)

            batch = self.tracker.collect_responses(turn_id)
            if batch is not None:
                result.tool_calls.extend(batch.calls)
                conversation.extend(batch.to_messages())

            if cancel is not None and cancel.cancelled:
                return finish(TurnStatus.CANCELLED, cancel.reason)
            if batch is not None and batch.all_cancelled:
                # Results stay in the history; the model is not re-prompted
                return finish(TurnStatus.CANCELLED, "All tool calls were cancelled")
            if batch is None or not batch.should_continue or result.intercepted:
                return finish(TurnStatus.COMPLETED)
            if result.continuations >= self.max_continuations:
                return finish(
                    TurnStatus.MAX_CONTINUATIONS,
                    f"Stopped after {self.max_continuations} continuations",
                )
            result.continuations += 1

    async def _settle(self, turn_id: str, cancel: CancellationToken | None) -> None:
        """Resolve approvals and wait until every call of the turn is terminal."""
        while not self.tracker.is_settled(turn_id):
            if cancel is not None and cancel.cancelled:
                self.tracker.cancel_all(turn_id, reason=cancel.reason or "Tool call cancelled")
                return

            waiting = self.tracker.awaiting_approval(turn_id)
            if waiting and self.approval_handler is not None:
                for call in waiting:
                    if call.status != ToolCallStatus.AWAITING_APPROVAL:
                        continue
                    decision = await self.approval_handler(call)
                    await self._apply_decision(call, ApprovalDecision(decision))
                continue

            changed = self.tracker.change_event()
            waiters = [asyncio.create_task(changed.wait())]
            if cancel is not None:
                waiters.append(asyncio.create_task(cancel.wait()))
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

    async def _apply_decision(self, call: ToolCall, decision: ApprovalDecision) -> None:
        self.logger.info("turn.approval_decision", call_id=call.call_id, tool=call.name, decision=decision.value)
        if decision == ApprovalDecision.DECLINE:
            self.tracker.decline(call.call_id)
            return
        if decision == ApprovalDecision.APPROVE_EDITS:
            await self.tracker.set_approval_mode(ApprovalMode.AUTO_EDIT)
        elif decision == ApprovalDecision.APPROVE_ALL:
            await self.tracker.set_approval_mode(ApprovalMode.YOLO)
        if call.status == ToolCallStatus.AWAITING_APPROVAL:
            await self.tracker.approve(call.call_id)
