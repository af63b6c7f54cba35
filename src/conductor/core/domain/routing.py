"""
Agent Routing

Selects the agent that should handle a free-text request.

Three strategies are supported:
- rule: score every agent's declared triggers against the text (pure, no I/O)
- llm: ask the model service to classify the request
- hybrid: use the rule score when it is confident enough, otherwise ask the
  model and keep whichever decision is more confident

The Router is stateless; a None result means "no match" and callers fall back
to their default agent.
"""

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

import structlog

from conductor.core.domain.agents import AgentDefinition
from conductor.core.domain.events import emit
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.model import ModelServiceProtocol

KEYWORD_WEIGHT = 10
PATTERN_WEIGHT = 15
DEFAULT_CONFIDENCE_THRESHOLD = 10


class RoutingStrategy(str, Enum):
    RULE = "rule"
    LLM = "llm"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class RouteDecision:
    """
    The agent selected for a request.

    Attributes:
        agent: Name of the selected agent
        confidence: 0-100
        strategy: Strategy that produced the decision
        matched_signals: Trigger signals that matched (rule scoring only)
        reasoning: Free-text explanation (model classification only)
    """

    agent: str
    confidence: int
    strategy: RoutingStrategy
    matched_signals: tuple[str, ...] = ()
    reasoning: str = ""


@dataclass(frozen=True)
class SignalScore:
    """Rule score of one agent for one input."""

    agent: str
    confidence: int
    matched_signals: tuple[str, ...] = ()


def _keyword_matches(keyword: str, text: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text, re.IGNORECASE) is not None


def score_agent(text: str, agent: AgentDefinition) -> SignalScore:
    """
    Score text against an agent's triggers.

    score = 10 * matched keywords + 15 * matched patterns, scaled by
    (1 + priority / 200); confidence is the score rounded half up and
    capped at 100.
    """
    triggers = agent.triggers
    signals: list[str] = []

    for keyword in sorted(triggers.keywords):
        if _keyword_matches(keyword, text):
            signals.append(f"keyword:{keyword}")
    keyword_hits = len(signals)

    for source, pattern in zip(triggers.patterns, triggers.compiled_patterns):
        if pattern.search(text):
            signals.append(f"pattern:{source}")
    pattern_hits = len(signals) - keyword_hits

    raw = KEYWORD_WEIGHT * keyword_hits + PATTERN_WEIGHT * pattern_hits
    scaled = raw * (1 + triggers.priority / 200)
    confidence = min(100, math.floor(scaled + 0.5))

    return SignalScore(agent=agent.name, confidence=confidence, matched_signals=tuple(signals))


def rank_agents(text: str, agents: Sequence[AgentDefinition]) -> list[SignalScore]:
    """Score all agents, highest confidence first; ties keep declaration order."""
    scores = [score_agent(text, agent) for agent in agents]
    # sorted() is stable, so equal confidences stay in declaration order
    return sorted(scores, key=lambda s: -s.confidence)


class Router:
    """
    Picks an agent for a request using rule, llm or hybrid routing.

    Args:
        model_service: Classifier used by the llm and hybrid strategies
        threshold: Minimum rule confidence for a rule match (and for the
            hybrid short-circuit)
        audit_sink: Optional display/audit sink
    """

    def __init__(
        self,
        model_service: ModelServiceProtocol | None = None,
        threshold: int = DEFAULT_CONFIDENCE_THRESHOLD,
        audit_sink: AuditSinkProtocol | None = None,
    ):
        self.model_service = model_service
        self.threshold = threshold
        self.audit_sink = audit_sink
        self.logger = structlog.get_logger().bind(component="router")

    def route_by_rules(
        self, text: str, agents: Sequence[AgentDefinition]
    ) -> RouteDecision | None:
        """Best rule-scored agent, or None below the threshold."""
        ranked = rank_agents(text, agents)
        if not ranked:
            return None
        best = ranked[0]
        if best.confidence <= 0 or best.confidence < self.threshold:
            return None
        return RouteDecision(
            agent=best.agent,
            confidence=best.confidence,
            strategy=RoutingStrategy.RULE,
            matched_signals=best.matched_signals,
        )

    async def route_by_model(
        self, text: str, agents: Sequence[AgentDefinition]
    ) -> RouteDecision | None:
        """Ask the model service; an invalid answer or a failure is no match."""
        if self.model_service is None:
            self.logger.warning("route.model_unavailable")
            return None

        try:
            decision = await self.model_service.classify(text, agents)
        except Exception as e:
            self.logger.warning(
                "route.model_failed", error=str(e), error_type=type(e).__name__
            )
            return None

        candidates = {agent.name for agent in agents}
        if decision is None or decision.agent not in candidates:
            self.logger.info(
                "route.model_invalid",
                agent=decision.agent if decision else None,
            )
            return None

        return RouteDecision(
            agent=decision.agent,
            confidence=100,
            strategy=RoutingStrategy.LLM,
            reasoning=decision.reasoning,
        )

    async def route(
        self,
        text: str,
        agents: Sequence[AgentDefinition],
        strategy: RoutingStrategy = RoutingStrategy.HYBRID,
    ) -> RouteDecision | None:
        """
        Select an agent for text.

        Returns:
            The decision, or None when nothing matched.
        """
        strategy = RoutingStrategy(strategy)
        if not agents:
            decision = None
        elif strategy == RoutingStrategy.RULE:
            decision = self.route_by_rules(text, agents)
        elif strategy == RoutingStrategy.LLM:
            decision = await self.route_by_model(text, agents)
        else:
            decision = await self._route_hybrid(text, agents)

        if decision is None:
            self.logger.info("route.no_match", strategy=strategy.value, agent_count=len(agents))
            emit(self.audit_sink, "route.no_match", strategy=strategy.value, text=text[:100])
        else:
            self.logger.info(
                "route.decided",
                agent=decision.agent,
                confidence=decision.confidence,
                strategy=decision.strategy.value,
            )
            emit(
                self.audit_sink,
                "route.decided",
                agent=decision.agent,
                confidence=decision.confidence,
                strategy=decision.strategy.value,
                matched_signals=list(decision.matched_signals),
            )
        return decision

    async def _route_hybrid(
        self, text: str, agents: Sequence[AgentDefinition]
    ) -> RouteDecision | None:
        ranked = rank_agents(text, agents)
        best = ranked[0]
        rule_decision = None
        if best.confidence > 0:
            rule_decision = RouteDecision(
                agent=best.agent,
                confidence=best.confidence,
                strategy=RoutingStrategy.HYBRID,
                matched_signals=best.matched_signals,
            )

        if rule_decision is not None and rule_decision.confidence >= self.threshold:
            return rule_decision

        model_decision = await self.route_by_model(text, agents)
        if model_decision is None:
            return rule_decision
        if rule_decision is not None and rule_decision.confidence >= model_decision.confidence:
            return rule_decision
        return replace(model_decision, strategy=RoutingStrategy.HYBRID)
