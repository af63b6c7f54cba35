"""Shared fixtures for the Conductor test suite."""

import pytest

from conductor.core.domain.routing import RouteDecision, RoutingStrategy
from conductor.infrastructure.audit.structlog_sink import MemoryAuditSink
from conductor.infrastructure.registry.memory_registry import InMemoryAgentRegistry
from fakes import FakeModelService, FakeToolExecutor, make_agent


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def agents():
    """Three specialists plus a catch-all."""
    return [
        make_agent("general"),
        make_agent("security", keywords=("security", "vulnerability"), patterns=(r"\bCVE-\d+",)),
        make_agent("reviewer", keywords=("review",), handoffs=("security",)),
        make_agent("architect", keywords=("design", "architecture"), priority=100),
    ]


@pytest.fixture
def registry(agents):
    return InMemoryAgentRegistry(agents)


@pytest.fixture
def model_service():
    return FakeModelService()


@pytest.fixture
def llm_decision():
    def build(agent: str) -> RouteDecision:
        return RouteDecision(agent=agent, confidence=100, strategy=RoutingStrategy.LLM, reasoning="fits")

    return build


@pytest.fixture
def tool_executor():
    executor = FakeToolExecutor()
    executor.add("read_file", {"success": True, "content": "hello"})
    executor.add("replace", {"success": True, "path": "a.py"}, requires_approval=True)
    executor.add("run_shell", {"success": True, "output": "ok"}, requires_approval=True)
    return executor
