"""
Unit Tests for the Orchestrator

Uses the real TurnAgentRunner on top of the scripted FakeModelService, so
routing, turns, handoffs, workflows and todos run end to end without a
model backend.
"""

import pytest

from conductor.application.orchestrator import Orchestrator
from conductor.application.settings import ConductorSettings
from conductor.core.domain.agents import AgentDefinition, ContextMode
from conductor.core.domain.errors import CyclicDependencyError, DefinitionError, UnknownAgentError
from conductor.core.domain.events import FinishedEvent
from conductor.core.domain.routing import RoutingStrategy
from conductor.core.domain.scheduler import BatchStatus
from conductor.core.domain.todos import TodoStatus
from conductor.core.domain.tool_calls import ApprovalMode
from conductor.core.domain.workflow import Step, WorkflowDefinition, WorkflowStatus
from conductor.infrastructure.registry.memory_registry import InMemoryAgentRegistry, InMemoryWorkflowStore
from fakes import FakeModelService, make_agent, tool_request

PLAN = {
    "title": "Add caching",
    "steps": [
        {"id": "step-1", "description": "Create cache module"},
        {"id": "step-2", "description": "Use cache in service", "dependencies": ["step-1"]},
    ],
}


@pytest.fixture
def settings():
    return ConductorSettings(batch_continuation_delay=0, routing_strategy=RoutingStrategy.RULE)


@pytest.fixture
def workflow_store():
    return InMemoryWorkflowStore(
        [
            WorkflowDefinition(
                name="echo",
                steps=(Step(id="first", agent="general"), Step(id="second", action="upper", input="${first.output}")),
            )
        ]
    )


@pytest.fixture
def orchestrator(registry, model_service, tool_executor, workflow_store, settings, audit_sink):
    async def upper(text, results):
        return text.upper()

    return Orchestrator(
        registry=registry,
        model_service=model_service,
        tool_executor=tool_executor,
        workflow_store=workflow_store,
        settings=settings,
        audit_sink=audit_sink,
        actions={"upper": upper},
    )


class TestSelectAgent:
    """Tests for agent selection."""

    @pytest.mark.asyncio
    async def test_explicit_agent_bypasses_routing(self, orchestrator):
        selection = await orchestrator.select_agent("security", agent="architect")
        assert selection.agent.name == "architect"
        assert selection.source == "explicit"

    @pytest.mark.asyncio
    async def test_unknown_explicit_agent(self, orchestrator):
        with pytest.raises(UnknownAgentError):
            await orchestrator.select_agent("x", agent="ghost")

    @pytest.mark.asyncio
    async def test_no_routing_uses_default(self, orchestrator):
        selection = await orchestrator.select_agent("security", no_routing=True)
        assert selection.agent.name == "general"
        assert selection.source == "no_routing"

    @pytest.mark.asyncio
    async def test_routed(self, orchestrator):
        selection = await orchestrator.select_agent("found a vulnerability")
        assert selection.agent.name == "security"
        assert selection.source == "routed"
        assert selection.decision.confidence == 10

    @pytest.mark.asyncio
    async def test_no_match_falls_back_to_default(self, orchestrator):
        selection = await orchestrator.select_agent("good morning")
        assert selection.agent.name == "general"
        assert selection.source == "fallback"


class TestAsk:
    """Tests for single agent turns."""

    @pytest.mark.asyncio
    async def test_runs_selected_agent(self, orchestrator, model_service):
        result = await orchestrator.ask("good morning")

        assert result.output == "done"
        assert result.handoff is None
        assert model_service.seen_messages[0][-1] == {"role": "user", "content": "good morning"}
        assert orchestrator.session.history[-1] == {"role": "assistant", "content": "done"}

    @pytest.mark.asyncio
    async def test_follows_handoff(self, orchestrator, model_service, audit_sink):
        model_service.turns = [
            [tool_request("h1", "handoff_to_agent", agent="security", reason="needs audit"), FinishedEvent()],
        ]
        result = await orchestrator.ask("please review this")

        assert result.selection.agent.name == "reviewer"
        assert result.handoff.chain == ("reviewer", "security")
        assert result.result.agent == "security"
        assert result.output == "done"
        offered = [t["function"]["name"] for t in model_service.seen_tools[0]]
        assert "handoff_to_agent" in offered
        assert len(audit_sink.of_kind("handoff.accepted")) == 1

    @pytest.mark.asyncio
    async def test_auto_completes_single_in_progress_todo(self, orchestrator):
        orchestrator.load_plan(PLAN)
        orchestrator.session.todos.set_status("step-1", TodoStatus.IN_PROGRESS)

        await orchestrator.ask("good morning")
        assert orchestrator.session.todos.get("step-1").status == TodoStatus.COMPLETED

    def test_cancel_without_operation(self, orchestrator):
        assert orchestrator.cancel() is False


class TestWorkflows:
    """Tests for stored workflows."""

    @pytest.mark.asyncio
    async def test_runs_stored_workflow(self, orchestrator):
        report = await orchestrator.run_workflow("echo", "hi")
        assert report.status == WorkflowStatus.COMPLETED
        assert report.results["second"].output == "DONE"

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, orchestrator):
        with pytest.raises(DefinitionError, match="Unknown workflow"):
            await orchestrator.run_workflow("missing", "hi")


class TestTodos:
    """Tests for plan loading and todo execution."""

    def test_load_plan_orders_todos(self, orchestrator):
        ordered = orchestrator.load_plan(PLAN)
        assert [t.id for t in ordered] == ["step-1", "step-2"]
        assert orchestrator.session.plan.title == "Add caching"

    def test_cyclic_plan_is_rejected(self, orchestrator):
        plan = {
            "steps": [
                {"id": "a", "description": "a", "dependencies": ["b"]},
                {"id": "b", "description": "b", "dependencies": ["a"]},
            ]
        }
        with pytest.raises(CyclicDependencyError):
            orchestrator.load_plan(plan)

    @pytest.mark.asyncio
    async def test_execute_todo(self, orchestrator, model_service):
        orchestrator.load_plan(PLAN)
        result = await orchestrator.execute_todo("step-1")

        assert result.success
        assert orchestrator.session.todos.get("step-1").status == TodoStatus.COMPLETED
        assert model_service.seen_messages[0][-1]["content"] == "Execute this task: Create cache module"

    @pytest.mark.asyncio
    async def test_execute_all(self, orchestrator, model_service):
        orchestrator.load_plan(PLAN)
        report = await orchestrator.execute_all(ApprovalMode.AUTO_EDIT, agent="general")

        assert report.status == BatchStatus.COMPLETED
        assert report.completed == 2
        assert orchestrator.session.todos.progress() == (2, 2)
        assert orchestrator.session.tracker.approval_mode == ApprovalMode.DEFAULT
        prompts = [messages[-1]["content"] for messages in model_service.seen_messages]
        assert prompts == [
            "[Batch Execution 1/2] Create cache module",
            "[Batch Execution 2/2] Use cache in service",
        ]

    @pytest.mark.asyncio
    async def test_unknown_agent_leaves_todo_pending(self, orchestrator):
        orchestrator.load_plan(PLAN)
        with pytest.raises(UnknownAgentError):
            await orchestrator.execute_todo("step-1", agent="bogus")
        assert orchestrator.session.todos.get("step-1").status == TodoStatus.PENDING


class TestContextModes:
    """Shared agents see the session conversation; isolated agents do not."""

    @pytest.fixture
    def shared_orchestrator(self, model_service, tool_executor, settings):
        registry = InMemoryAgentRegistry(
            [
                AgentDefinition(name="general", system_prompt="sys", context_mode=ContextMode.SHARED),
                make_agent("security", keywords=("security",)),
            ]
        )
        return Orchestrator(
            registry=registry, model_service=model_service, tool_executor=tool_executor, settings=settings
        )

    @pytest.mark.asyncio
    async def test_shared_agent_sees_earlier_turns(self, shared_orchestrator, model_service):
        await shared_orchestrator.ask("good morning")
        await shared_orchestrator.ask("and now?")

        assert model_service.seen_messages[1] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "good morning"},
            {"role": "assistant", "content": "done"},
            {"role": "user", "content": "and now?"},
        ]

    @pytest.mark.asyncio
    async def test_isolated_agent_starts_fresh(self, shared_orchestrator, model_service):
        await shared_orchestrator.ask("good morning")
        await shared_orchestrator.ask("security audit please")

        assert [m["role"] for m in model_service.seen_messages[1]] == ["system", "user"]
