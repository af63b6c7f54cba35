"""
Orchestrator

Application service wiring router, handoff manager, workflow executor, turn
processing and todo scheduler for one Session. The CLI drives everything
through this class.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

import structlog

from conductor.application.agent_runner import TurnAgentRunner
from conductor.application.settings import ConductorSettings
from conductor.core.domain.agents import AgentDefinition
from conductor.core.domain.cancellation import CancellationToken
from conductor.core.domain.errors import DefinitionError, UnknownAgentError
from conductor.core.domain.handoff import HandoffChainResult, HandoffManager, HandoffRequest
from conductor.core.domain.routing import RouteDecision, Router, RoutingStrategy
from conductor.core.domain.scheduler import BatchReport, Session, TodoScheduler
from conductor.core.domain.todos import Plan, Todo, plan_to_todos
from conductor.core.domain.tool_calls import ApprovalMode, ToolCallTracker
from conductor.core.domain.turn import ApprovalHandler
from conductor.core.domain.workflow import WorkflowReport
from conductor.core.domain.workflow_executor import ActionHandler, WorkflowExecutor
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.model import ModelServiceProtocol
from conductor.core.interfaces.registry import AgentRegistryProtocol, WorkflowStoreProtocol
from conductor.core.interfaces.runner import AgentRunnerProtocol, AgentRunResult
from conductor.core.interfaces.tools import ToolExecutorProtocol


@dataclass(frozen=True)
class AgentSelection:
    """
    The agent chosen for a request and how it was chosen.

    source is one of: explicit, no_routing, routed, fallback.
    """

    agent: AgentDefinition
    source: str
    decision: RouteDecision | None = None


@dataclass
class AskResult:
    selection: AgentSelection
    result: AgentRunResult
    handoff: HandoffChainResult | None = None

    @property
    def output(self) -> str:
        return self.result.output


class Orchestrator:
    """
    Entry point for routing, agent turns, workflows and todo execution.

    Args:
        registry: Agent definitions
        model_service: Model backend
        tool_executor: Tool execution service
        workflow_store: Workflow definitions
        settings: Runtime settings
        audit_sink: Display/audit sink
        approval_handler: Asked for tool calls that need approval
        actions: Named raw actions for workflow steps
        runner: Replaces the default TurnAgentRunner
    """

    def __init__(
        self,
        registry: AgentRegistryProtocol,
        model_service: ModelServiceProtocol,
        tool_executor: ToolExecutorProtocol,
        workflow_store: WorkflowStoreProtocol | None = None,
        settings: ConductorSettings | None = None,
        audit_sink: AuditSinkProtocol | None = None,
        approval_handler: ApprovalHandler | None = None,
        actions: Mapping[str, ActionHandler] | None = None,
        runner: AgentRunnerProtocol | None = None,
    ):
        self.settings = settings or ConductorSettings()
        self.registry = registry
        self.workflow_store = workflow_store
        self.audit_sink = audit_sink
        self.logger = structlog.get_logger().bind(component="orchestrator")

        self.session = Session(tracker=ToolCallTracker(tool_executor, audit_sink=audit_sink))
        self.router = Router(
            model_service,
            threshold=self.settings.routing_threshold,
            audit_sink=audit_sink,
        )
        self.handoff_manager = HandoffManager(
            registry,
            audit_sink=audit_sink,
            max_depth=self.settings.max_handoff_depth,
        )
        self.runner = runner or TurnAgentRunner(
            model_service,
            self.session.tracker,
            tool_executor,
            audit_sink=audit_sink,
            max_continuations=self.settings.max_continuations,
            approval_handler=approval_handler,
            history=self.session.history,
        )
        self.workflow_executor = WorkflowExecutor(
            self.runner,
            registry,
            router=self.router,
            handoff_manager=self.handoff_manager,
            actions=actions,
            audit_sink=audit_sink,
            default_agent=self.settings.default_agent,
            routing_strategy=self.settings.routing_strategy,
        )
        self.scheduler = TodoScheduler(
            self.session,
            audit_sink=audit_sink,
            continuation_delay=self.settings.batch_continuation_delay,
        )
        self._cancel: CancellationToken | None = None

    # ----- routing -----

    async def select_agent(
        self,
        text: str,
        agent: str | None = None,
        no_routing: bool = False,
        strategy: RoutingStrategy | None = None,
    ) -> AgentSelection:
        """
        Pick the agent for text.

        An explicit agent bypasses routing; no_routing selects the default
        agent; a routing miss falls back to the default agent.

        Raises:
            UnknownAgentError: explicit or default agent is not registered
        """
        if agent:
            return AgentSelection(agent=self._require_agent(agent), source="explicit")
        if no_routing:
            return AgentSelection(
                agent=self._require_agent(self.settings.default_agent), source="no_routing"
            )

        decision = await self.router.route(
            text, self.registry.list_agents(), strategy or self.settings.routing_strategy
        )
        if decision is not None:
            return AgentSelection(
                agent=self._require_agent(decision.agent), source="routed", decision=decision
            )

        self.logger.info("orchestrator.route_fallback", default_agent=self.settings.default_agent)
        return AgentSelection(
            agent=self._require_agent(self.settings.default_agent), source="fallback"
        )

    # ----- agent turns -----

    async def ask(
        self,
        text: str,
        agent: str | None = None,
        no_routing: bool = False,
        strategy: RoutingStrategy | None = None,
    ) -> AskResult:
        """Route text, run the selected agent and follow any handoff it requests."""
        selection = await self.select_agent(text, agent, no_routing, strategy)
        cancel = self._begin()
        try:
            result = await self.runner.run(selection.agent, text, None)
            chain = None
            if result.success and result.handoff_to:
                chain = await self.handoff_manager.run_chain(
                    HandoffRequest.start(
                        selection.agent.name, result.handoff_to, reason=result.handoff_reason
                    ),
                    text,
                    self.runner,
                    context=result.messages,
                    source_result=result,
                )
                result = chain.result
        finally:
            self._end(cancel)

        if result.success:
            self.scheduler.complete_single_in_progress()
        self.session.history.extend(result.messages)
        return AskResult(selection=selection, result=result, handoff=chain)

    # ----- workflows -----

    async def run_workflow(self, name: str, input_text: str) -> WorkflowReport:
        """
        Run a stored workflow.

        Raises:
            DefinitionError: no workflow store or unknown workflow
        """
        if self.workflow_store is None:
            raise DefinitionError("No workflow definitions are loaded")
        workflow = self.workflow_store.get(name)
        if workflow is None:
            raise DefinitionError(f"Unknown workflow '{name}'")

        if workflow.timeout_seconds is None and self.settings.workflow_timeout_seconds:
            workflow = replace(workflow, timeout_seconds=self.settings.workflow_timeout_seconds)

        cancel = self._begin()
        try:
            return await self.workflow_executor.run(workflow, input_text, cancel)
        finally:
            self._end(cancel)

    # ----- todos -----

    def load_plan(self, plan: Plan | dict[str, Any] | str) -> list[Todo]:
        """
        Convert a plan into the session's todos, in dependency order.

        Raises:
            CyclicDependencyError: the plan's dependencies contain a cycle
        """
        if not isinstance(plan, Plan):
            plan = Plan.from_dict(plan)
        todos = plan_to_todos(plan)
        self.session.todos.replace(todos)
        ordered = self.session.todos.ordered()
        self.session.plan = plan
        self.logger.info("orchestrator.plan_loaded", title=plan.title, todos=len(todos))
        return ordered

    async def execute_todo(self, todo_id: str, agent: str | None = None) -> AgentRunResult:
        cancel = self._begin()
        try:
            return await self.scheduler.execute_todo(todo_id, self._todo_runner(agent), cancel)
        finally:
            self._end(cancel)

    async def execute_all(
        self,
        mode: ApprovalMode = ApprovalMode.DEFAULT,
        agent: str | None = None,
    ) -> BatchReport:
        cancel = self._begin()
        try:
            return await self.scheduler.run_batch(self._todo_runner(agent), mode, cancel)
        finally:
            self._end(cancel)

    def cancel(self, reason: str = "Cancelled by user") -> bool:
        """Cancel the running operation; returns False when nothing is running."""
        if self._cancel is None or self._cancel.cancelled:
            return False
        self._cancel.cancel(reason)
        self.session.tracker.cancel_all(reason=reason)
        return True

    # ----- internals -----

    def _todo_runner(self, agent: str | None):
        # An explicit agent is resolved before any todo changes status
        fixed = self._require_agent(agent) if agent else None

        async def run(todo: Todo, prompt: str, cancel: CancellationToken | None) -> AgentRunResult:
            selected = fixed or (await self.select_agent(todo.description)).agent
            return await self.runner.run(selected, prompt, None)

        return run

    def _require_agent(self, name: str) -> AgentDefinition:
        definition = self.registry.get(name)
        if definition is None:
            raise UnknownAgentError(name)
        return definition

    def _begin(self) -> CancellationToken:
        cancel = CancellationToken()
        self._cancel = cancel
        if isinstance(self.runner, TurnAgentRunner):
            self.runner.cancel = cancel
        return cancel

    def _end(self, cancel: CancellationToken) -> None:
        if self._cancel is cancel:
            self._cancel = None
        if isinstance(self.runner, TurnAgentRunner) and self.runner.cancel is cancel:
            self.runner.cancel = None
