"""
Agent Handoffs

Transfers an in-flight task from one agent to another.

Validation is a pure function of the request: a transfer is rejected when it
would revisit an agent already in the chain, exceed the maximum chain depth,
or target an agent that is not registered. Nothing (context copy, agent
invocation, audit) happens before validation has accepted the request.

The correlation id is generated once, at the first accepted handoff of a
chain, and inherited by every later transfer so the whole chain can be
audited together.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import structlog

from conductor.core.domain.events import emit
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.registry import AgentRegistryProtocol
from conductor.core.interfaces.runner import AgentRunnerProtocol, AgentRunResult

MAX_HANDOFF_DEPTH = 5


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class HandoffRejection(str, Enum):
    CIRCULAR_HANDOFF = "circular_handoff"
    DEPTH_EXCEEDED = "depth_exceeded"
    UNKNOWN_AGENT = "unknown_agent"


@dataclass(frozen=True)
class HandoffRequest:
    """
    A requested transfer.

    Attributes:
        from_agent: Agent currently holding the task
        to_agent: Requested target
        chain: Agents that held the task so far, starting with the initial one
        depth: Number of transfers already made in this chain
        correlation_id: Chain identifier; None before the first transfer
        include_context: Copy the conversation to the target; None defers to
            the source agent's handoff rule
        reason: Why the transfer was requested
    """

    from_agent: str
    to_agent: str
    chain: tuple[str, ...] = ()
    depth: int = 0
    correlation_id: str | None = None
    include_context: bool | None = None
    reason: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "chain", tuple(self.chain) or (self.from_agent,))

    @classmethod
    def start(
        cls,
        from_agent: str,
        to_agent: str,
        include_context: bool | None = None,
        reason: str = "",
    ) -> "HandoffRequest":
        """First transfer away from the agent that received the user request."""
        return cls(
            from_agent=from_agent,
            to_agent=to_agent,
            chain=(from_agent,),
            include_context=include_context,
            reason=reason,
        )


@dataclass(frozen=True)
class HandoffAccepted:
    request: HandoffRequest
    chain: tuple[str, ...]
    depth: int
    correlation_id: str
    include_context: bool

    @property
    def to_agent(self) -> str:
        return self.request.to_agent

    def next_request(
        self, to_agent: str, include_context: bool | None = None, reason: str = ""
    ) -> HandoffRequest:
        """Request a further transfer from the agent that just received the task."""
        return HandoffRequest(
            from_agent=self.request.to_agent,
            to_agent=to_agent,
            chain=self.chain,
            depth=self.depth,
            correlation_id=self.correlation_id,
            include_context=include_context,
            reason=reason,
        )


@dataclass(frozen=True)
class HandoffRejected:
    request: HandoffRequest
    reason: HandoffRejection
    message: str


HandoffOutcome = Union[HandoffAccepted, HandoffRejected]


def validate_handoff(
    request: HandoffRequest,
    target_exists: bool,
    max_depth: int = MAX_HANDOFF_DEPTH,
    id_factory: Callable[[], str] = _new_correlation_id,
) -> HandoffOutcome:
    """
    Validate a transfer without side effects.

    Checks run in order: cycle, depth, target existence.
    """
    target = request.to_agent

    if target in request.chain:
        return HandoffRejected(
            request=request,
            reason=HandoffRejection.CIRCULAR_HANDOFF,
            message=f"Agent '{target}' already handled this task ({' -> '.join(request.chain)})",
        )

    if request.depth + 1 > max_depth:
        return HandoffRejected(
            request=request,
            reason=HandoffRejection.DEPTH_EXCEEDED,
            message=f"Handoff depth limit of {max_depth} reached",
        )

    if not target_exists:
        return HandoffRejected(
            request=request,
            reason=HandoffRejection.UNKNOWN_AGENT,
            message=f"Unknown agent: {target}",
        )

    return HandoffAccepted(
        request=request,
        chain=request.chain + (target,),
        depth=request.depth + 1,
        correlation_id=request.correlation_id or id_factory(),
        include_context=bool(request.include_context),
    )


@dataclass
class HandoffChainResult:
    """
    Result of following a chain of handoffs.

    Attributes:
        final_agent: Agent that produced the final output
        result: The last successful agent result
        chain: Agents that held the task, in order
        correlation_id: Chain identifier (None if the first transfer was declined)
        rejection: Set when a requested transfer was declined
    """

    final_agent: str
    result: AgentRunResult
    chain: tuple[str, ...]
    correlation_id: str | None = None
    rejection: HandoffRejected | None = None
    steps: list[AgentRunResult] = field(default_factory=list)

    @property
    def declined(self) -> bool:
        return self.rejection is not None


class HandoffManager:
    """
    Validates and executes transfers between registered agents.

    Args:
        registry: Agent registry used for existence checks and handoff rules
        audit_sink: Receives handoff.accepted / handoff.rejected events
        max_depth: Maximum number of transfers in one chain
        id_factory: Correlation id generator
    """

    def __init__(
        self,
        registry: AgentRegistryProtocol,
        audit_sink: AuditSinkProtocol | None = None,
        max_depth: int = MAX_HANDOFF_DEPTH,
        id_factory: Callable[[], str] = _new_correlation_id,
    ):
        self.registry = registry
        self.audit_sink = audit_sink
        self.max_depth = max_depth
        self.id_factory = id_factory
        self.logger = structlog.get_logger().bind(component="handoff_manager")

    def request_handoff(self, request: HandoffRequest) -> HandoffOutcome:
        """Validate a transfer against the registry and report the outcome."""
        if request.include_context is None:
            source = self.registry.get(request.from_agent)
            rule = source.handoff_rule_for(request.to_agent) if source else None
            include_context = rule.include_context if rule else False
            request = HandoffRequest(
                from_agent=request.from_agent,
                to_agent=request.to_agent,
                chain=request.chain,
                depth=request.depth,
                correlation_id=request.correlation_id,
                include_context=include_context,
                reason=request.reason,
            )

        outcome = validate_handoff(
            request,
            target_exists=request.to_agent in self.registry,
            max_depth=self.max_depth,
            id_factory=self.id_factory,
        )

        if isinstance(outcome, HandoffAccepted):
            self.logger.info(
                "handoff.accepted",
                from_agent=request.from_agent,
                to_agent=request.to_agent,
                depth=outcome.depth,
                correlation_id=outcome.correlation_id,
            )
            emit(
                self.audit_sink,
                "handoff.accepted",
                from_agent=request.from_agent,
                to_agent=request.to_agent,
                chain=list(outcome.chain),
                depth=outcome.depth,
                include_context=outcome.include_context,
                correlation_id=outcome.correlation_id,
            )
        else:
            self.logger.warning(
                "handoff.rejected",
                from_agent=request.from_agent,
                to_agent=request.to_agent,
                reason=outcome.reason.value,
                correlation_id=request.correlation_id,
            )
            emit(
                self.audit_sink,
                "handoff.rejected",
                from_agent=request.from_agent,
                to_agent=request.to_agent,
                reason=outcome.reason.value,
                message=outcome.message,
                correlation_id=request.correlation_id,
            )
        return outcome

    async def run_chain(
        self,
        request: HandoffRequest,
        task: str,
        runner: AgentRunnerProtocol,
        context: list[dict[str, Any]] | None = None,
        source_result: AgentRunResult | None = None,
    ) -> HandoffChainResult:
        """
        Execute a transfer and follow any further transfers the targets request.

        Args:
            request: The first transfer
            task: Prompt handed to every target agent
            runner: Agent execution primitive
            context: Conversation of the source agent, copied only when the
                transfer includes context
            source_result: Result of the source agent, kept as the final
                result if the first transfer is declined

        Returns:
            HandoffChainResult; a declined transfer is reported, never raised.
        """
        last_result = source_result or AgentRunResult(agent=request.from_agent)
        steps: list[AgentRunResult] = []
        current_context = context or []
        correlation_id = request.correlation_id

        while True:
            outcome = self.request_handoff(request)
            if isinstance(outcome, HandoffRejected):
                return HandoffChainResult(
                    final_agent=last_result.agent,
                    result=last_result,
                    chain=request.chain,
                    correlation_id=correlation_id,
                    rejection=outcome,
                    steps=steps,
                )

            correlation_id = outcome.correlation_id
            target = self.registry.get(outcome.to_agent)
            if target is None:
                raise RuntimeError(f"Registry lost agent '{outcome.to_agent}' after validation")

            handed_context = list(current_context) if outcome.include_context else None
            result = await runner.run(target, task, handed_context)
            steps.append(result)
            last_result = result
            current_context = current_context + result.messages

            if not result.success or not result.handoff_to:
                return HandoffChainResult(
                    final_agent=target.name,
                    result=result,
                    chain=outcome.chain,
                    correlation_id=correlation_id,
                    steps=steps,
                )

            request = outcome.next_request(result.handoff_to, reason=result.handoff_reason)
