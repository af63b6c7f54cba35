"""
Agent runner built on the TurnProcessor.

Runs one agent on one prompt: builds the conversation from the agent's
system prompt (plus the session conversation for shared agents and any
handed-over context), offers the tools its policy permits and, when the
agent declares handoff rules, a `handoff_to_agent` tool. A call to that
tool ends the turn and is reported as a handoff request; the
HandoffManager decides whether it is honored.
"""

from collections.abc import Sequence
from typing import Any

import structlog

from conductor.core.domain.agents import AgentDefinition, ContextMode, HandoffRule
from conductor.core.domain.cancellation import CancellationToken
from conductor.core.domain.messages import system_message, user_message
from conductor.core.domain.tool_calls import ToolCallTracker, summarize_calls
from conductor.core.domain.turn import ApprovalHandler, TurnProcessor, TurnStatus
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.model import ModelServiceProtocol
from conductor.core.interfaces.runner import AgentRunResult
from conductor.core.interfaces.tools import ToolExecutorProtocol

HANDOFF_TOOL_NAME = "handoff_to_agent"

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant working in the user's terminal."


def handoff_tool_schema(rules: Sequence[HandoffRule]) -> dict[str, Any]:
    """Function schema letting the model request a transfer to one of rules' targets."""
    hints = "; ".join(f"{rule.to}: {rule.condition}" for rule in rules if rule.condition)
    description = "Transfer the current task to a more suitable agent."
    if hints:
        description += f" Use when: {hints}"
    return {
        "type": "function",
        "function": {
            "name": HANDOFF_TOOL_NAME,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": {
                    "agent": {
                        "type": "string",
                        "enum": [rule.to for rule in rules],
                        "description": "Name of the agent that should take over",
                    },
                    "reason": {
                        "type": "string",
                        "description": "Why the task should be transferred",
                    },
                },
                "required": ["agent"],
            },
        },
    }


class TurnAgentRunner:
    """
    AgentRunnerProtocol implementation running real model turns.

    Args:
        model_service: Streams model turns
        tracker: Session tool call tracker
        tool_executor: Supplies tool schemas
        audit_sink: Forwarded to the TurnProcessor
        max_continuations: Per-turn limit of tool-result re-prompts
        approval_handler: Asked for calls that need approval
        history: Session conversation; shared agents see it before their
            prompt, isolated agents never do
    """

    def __init__(
        self,
        model_service: ModelServiceProtocol,
        tracker: ToolCallTracker,
        tool_executor: ToolExecutorProtocol,
        audit_sink: AuditSinkProtocol | None = None,
        max_continuations: int = 30,
        approval_handler: ApprovalHandler | None = None,
        history: list[dict[str, Any]] | None = None,
    ):
        self.tracker = tracker
        self.history = history if history is not None else []
        self.tool_executor = tool_executor
        self.processor = TurnProcessor(
            model_service,
            tracker,
            audit_sink=audit_sink,
            max_continuations=max_continuations,
            approval_handler=approval_handler,
            intercepted_tools={HANDOFF_TOOL_NAME},
        )
        # Set by the orchestrator for the duration of one operation
        self.cancel: CancellationToken | None = None
        self.logger = structlog.get_logger().bind(component="agent_runner")

    def tools_for(self, agent: AgentDefinition) -> list[dict[str, Any]]:
        tools = [
            schema
            for schema in self.tool_executor.tool_schemas()
            if agent.tool_policy.permits(schema["function"]["name"])
        ]
        if agent.handoffs:
            tools.append(handoff_tool_schema(agent.handoffs))
        return tools

    async def run(
        self,
        agent: AgentDefinition,
        prompt: str,
        context: list[dict[str, Any]] | None = None,
    ) -> AgentRunResult:
        messages = [system_message(agent.system_prompt or DEFAULT_SYSTEM_PROMPT)]
        if agent.context_mode == ContextMode.SHARED:
            messages.extend(self.history)
        messages.extend(context or [])
        messages.append(user_message(prompt))

        self.logger.info(
            "agent.turn_started",
            agent=agent.name,
            context_mode=agent.context_mode.value,
            context_messages=len(messages) - 2,
        )
        turn = await self.processor.run(
            messages, self.tools_for(agent), self.cancel, tool_policy=agent.tool_policy
        )

        handoff_to = None
        handoff_reason = ""
        if turn.intercepted:
            request = turn.intercepted[0]
            handoff_to = str(request.args.get("agent") or "") or None
            handoff_reason = str(request.args.get("reason") or "")

        success = turn.status == TurnStatus.COMPLETED
        return AgentRunResult(
            agent=agent.name,
            output=turn.output,
            data={
                "turn_status": turn.status.value,
                "continuations": turn.continuations,
                "tool_calls": summarize_calls(turn.tool_calls),
            },
            success=success,
            error=None if success else (turn.error or turn.status.value),
            handoff_to=handoff_to,
            handoff_reason=handoff_reason,
            messages=[user_message(prompt)] + turn.messages,
        )
