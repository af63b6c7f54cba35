"""
Unit Tests for the Router

Rule scoring is pure and tested directly; llm and hybrid routing use the
scripted FakeModelService.
"""

import pytest

from conductor.core.domain.routing import (
    Router,
    RoutingStrategy,
    rank_agents,
    score_agent,
)
from fakes import make_agent


class TestScoreAgent:
    """Tests for rule scoring."""

    def test_keywords_and_patterns_are_weighted(self, agents):
        score = score_agent("Fix the security vulnerability in CVE-2024", agents[1])
        assert score.confidence == 35
        assert score.matched_signals == (
            "keyword:security",
            "keyword:vulnerability",
            r"pattern:\bCVE-\d+",
        )

    def test_priority_scales_score(self):
        agent = make_agent("architect", keywords=("design",), priority=100)
        assert score_agent("design the api", agent).confidence == 15

    def test_confidence_rounds_half_up(self):
        agent = make_agent("planner", keywords=("plan",), priority=50)
        # 10 * 1.25 = 12.5
        assert score_agent("plan it", agent).confidence == 13

    def test_confidence_is_capped_at_100(self):
        words = ("a1", "b2", "c3", "d4", "e5", "f6", "g7", "h8")
        agent = make_agent("greedy", keywords=words, priority=100)
        assert score_agent(" ".join(words), agent).confidence == 100

    def test_keywords_match_whole_words_only(self, agents):
        reviewer = agents[2]
        assert score_agent("I am reviewing this", reviewer).confidence == 0
        assert score_agent("Please REVIEW this", reviewer).confidence == 10

    def test_no_triggers_scores_zero(self, agents):
        score = score_agent("anything", agents[0])
        assert score.confidence == 0
        assert score.matched_signals == ()

    def test_rank_keeps_declaration_order_on_ties(self):
        first = make_agent("first", keywords=("deploy",))
        second = make_agent("second", keywords=("deploy",))
        ranked = rank_agents("deploy now", [first, second])
        assert [s.agent for s in ranked] == ["first", "second"]


class TestRuleRouting:
    """Tests for the rule strategy."""

    @pytest.mark.asyncio
    async def test_selects_highest_score(self, agents, model_service):
        router = Router(model_service)
        decision = await router.route("security review", agents, RoutingStrategy.RULE)
        assert decision.agent == "security"
        assert decision.strategy == RoutingStrategy.RULE
        assert model_service.classify_calls == []

    @pytest.mark.asyncio
    async def test_no_signal_is_no_match(self, agents):
        router = Router()
        assert await router.route("hello there", agents, RoutingStrategy.RULE) is None

    @pytest.mark.asyncio
    async def test_below_threshold_is_no_match(self, agents):
        router = Router(threshold=20)
        assert await router.route("please review", agents, RoutingStrategy.RULE) is None

    @pytest.mark.asyncio
    async def test_empty_agent_list_is_no_match(self):
        assert await Router().route("anything", [], RoutingStrategy.HYBRID) is None

    @pytest.mark.asyncio
    async def test_decision_is_audited(self, agents, audit_sink):
        router = Router(audit_sink=audit_sink)
        await router.route("security", agents, RoutingStrategy.RULE)
        await router.route("nothing", agents, RoutingStrategy.RULE)
        decided = audit_sink.of_kind("route.decided")
        assert decided[0].payload["agent"] == "security"
        assert len(audit_sink.of_kind("route.no_match")) == 1


class TestModelRouting:
    """Tests for the llm strategy."""

    @pytest.mark.asyncio
    async def test_uses_model_decision(self, agents, model_service, llm_decision):
        model_service.decision = llm_decision("architect")
        decision = await Router(model_service).route("hello", agents, RoutingStrategy.LLM)
        assert decision.agent == "architect"
        assert decision.strategy == RoutingStrategy.LLM
        assert decision.reasoning == "fits"

    @pytest.mark.asyncio
    async def test_unknown_agent_from_model_is_no_match(self, agents, model_service, llm_decision):
        model_service.decision = llm_decision("does-not-exist")
        assert await Router(model_service).route("hello", agents, RoutingStrategy.LLM) is None

    @pytest.mark.asyncio
    async def test_model_failure_is_no_match(self, agents, model_service):
        model_service.classify_error = RuntimeError("backend down")
        assert await Router(model_service).route("hello", agents, RoutingStrategy.LLM) is None

    @pytest.mark.asyncio
    async def test_without_model_service_is_no_match(self, agents):
        assert await Router().route("hello", agents, RoutingStrategy.LLM) is None


class TestHybridRouting:
    """Tests for the hybrid strategy."""

    @pytest.mark.asyncio
    async def test_confident_rule_skips_model(self, agents, model_service, llm_decision):
        model_service.decision = llm_decision("general")
        decision = await Router(model_service).route("please review", agents)
        assert decision.agent == "reviewer"
        assert decision.strategy == RoutingStrategy.HYBRID
        assert model_service.classify_calls == []

    @pytest.mark.asyncio
    async def test_weak_rule_consults_model(self, agents, model_service, llm_decision):
        model_service.decision = llm_decision("security")
        decision = await Router(model_service, threshold=20).route("please review", agents)
        assert model_service.classify_calls == ["please review"]
        assert decision.agent == "security"
        assert decision.strategy == RoutingStrategy.HYBRID

    @pytest.mark.asyncio
    async def test_weak_rule_kept_when_model_has_no_answer(self, agents, model_service):
        decision = await Router(model_service, threshold=20).route("please review", agents)
        assert decision.agent == "reviewer"
        assert decision.confidence == 10

    @pytest.mark.asyncio
    async def test_no_signal_and_no_model_answer_is_no_match(self, agents, model_service):
        assert await Router(model_service).route("hello", agents) is None
