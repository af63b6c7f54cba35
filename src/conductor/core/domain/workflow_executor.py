"""
Workflow Executor

Runs a WorkflowDefinition: sequential steps in declaration order, parallel
groups with concurrent dispatch, `when` conditions, retries, error policies,
a workflow-level timeout and cooperative cancellation.

Run lifecycle: pending -> running -> completed | failed | aborted.

Execution errors never escape run(); they are recorded on StepResults and
summarized in the WorkflowReport. Callers that want an exception use
WorkflowReport.raise_for_status().
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any

import structlog

from conductor.core.domain.agents import AgentDefinition
from conductor.core.domain.cancellation import CancellationToken
from conductor.core.domain.errors import (
    AbortError,
    NoMatchError,
    StepExecutionError,
    TemplateResolutionError,
    UnknownAgentError,
)
from conductor.core.domain.events import emit
from conductor.core.domain.handoff import HandoffManager, HandoffRequest
from conductor.core.domain.routing import Router, RoutingStrategy
from conductor.core.domain.workflow import (
    ErrorAction,
    ParallelGroup,
    Step,
    StepResult,
    StepStatus,
    WorkflowDefinition,
    WorkflowReport,
    WorkflowStatus,
    evaluate_condition,
    render_template,
)
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.registry import AgentRegistryProtocol
from conductor.core.interfaces.runner import AgentRunnerProtocol

# An action receives the rendered step input and the results so far and
# returns either plain output text or {"output": ..., "data": {...}}.
ActionHandler = Callable[[str, Mapping[str, StepResult]], Awaitable[Any]]


class WorkflowExecutor:
    """
    Executes workflow definitions against registered agents and actions.

    Args:
        runner: Agent execution primitive
        registry: Agents available to agent and routed steps
        router: Picks the agent for steps that name neither agent nor action
        handoff_manager: Follows transfers requested by step agents
        actions: Named raw actions available to action steps
        audit_sink: Receives workflow and step events
        default_agent: Fallback for routed steps when nothing matches
        routing_strategy: Strategy used for routed steps
    """

    def __init__(
        self,
        runner: AgentRunnerProtocol,
        registry: AgentRegistryProtocol,
        router: Router | None = None,
        handoff_manager: HandoffManager | None = None,
        actions: Mapping[str, ActionHandler] | None = None,
        audit_sink: AuditSinkProtocol | None = None,
        default_agent: str | None = None,
        routing_strategy: RoutingStrategy = RoutingStrategy.HYBRID,
    ):
        self.runner = runner
        self.registry = registry
        self.router = router
        self.handoff_manager = handoff_manager
        self.actions = dict(actions or {})
        self.audit_sink = audit_sink
        self.default_agent = default_agent
        self.routing_strategy = routing_strategy
        self.logger = structlog.get_logger().bind(component="workflow_executor")

    def register_action(self, name: str, handler: ActionHandler) -> None:
        self.actions[name] = handler

    async def run(
        self,
        workflow: WorkflowDefinition,
        input_text: str,
        cancel: CancellationToken | None = None,
    ) -> WorkflowReport:
        """
        Execute workflow with input_text as ${workflow.input}.

        Returns:
            WorkflowReport describing every dispatched step.
        """
        report = WorkflowReport(
            workflow=workflow.name,
            status=WorkflowStatus.RUNNING,
            started_at=datetime.now(),
        )
        self.logger.info(
            "workflow.started",
            workflow=workflow.name,
            entries=len(workflow.steps),
            timeout_seconds=workflow.timeout_seconds,
        )
        emit(self.audit_sink, "workflow.started", workflow=workflow.name)

        try:
            body = self._run_entries(workflow, input_text, report, cancel)
            if workflow.timeout_seconds is not None:
                await asyncio.wait_for(body, timeout=workflow.timeout_seconds)
            else:
                await body
        except asyncio.TimeoutError:
            report.status = WorkflowStatus.ABORTED
            report.error = f"Workflow timed out after {workflow.timeout_seconds}s"
            report.errors.append(report.error)
        except AbortError as e:
            report.status = WorkflowStatus.ABORTED
            report.error = str(e)
            report.errors.append(report.error)
        finally:
            report.finished_at = datetime.now()
            report.not_run = [
                entry.id for entry in workflow.steps if entry.id not in report.results
            ]

        log = self.logger.info if report.succeeded else self.logger.warning
        log(
            "workflow.finished",
            workflow=workflow.name,
            status=report.status.value,
            error=report.error,
            duration_seconds=report.duration_seconds,
            not_run=report.not_run,
        )
        emit(
            self.audit_sink,
            "workflow.finished",
            workflow=workflow.name,
            status=report.status.value,
            error=report.error,
        )
        return report

    async def _run_entries(
        self,
        workflow: WorkflowDefinition,
        input_text: str,
        report: WorkflowReport,
        cancel: CancellationToken | None,
    ) -> None:
        for entry in workflow.steps:
            if cancel is not None:
                cancel.raise_if_cancelled()

            if isinstance(entry, ParallelGroup):
                group_result = await self._run_group(entry, input_text, report, cancel)
                if group_result.status == StepStatus.ERROR:
                    report.errors.append(group_result.error or f"Group '{entry.id}' failed")
                    if entry.error_policy.on_error == ErrorAction.ABORT:
                        report.status = WorkflowStatus.FAILED
                        report.error = group_result.error
                        return
                continue

            result = await self._run_step(entry, entry.id, input_text, report.results, cancel)
            self._record(report, result)
            if result.status == StepStatus.ERROR:
                report.errors.append(result.error or f"Step '{entry.id}' failed")
                if workflow.on_error == ErrorAction.ABORT:
                    report.status = WorkflowStatus.FAILED
                    report.error = result.error
                    return

        report.status = WorkflowStatus.COMPLETED

    async def _run_group(
        self,
        group: ParallelGroup,
        input_text: str,
        report: WorkflowReport,
        cancel: CancellationToken | None,
    ) -> StepResult:
        # Members only see results that existed before the group started
        snapshot = dict(report.results)

        async def run_member(step: Step) -> StepResult:
            key = f"{group.id}.{step.id}"
            result = await self._run_step(step, key, input_text, snapshot, cancel)
            self._record(report, result)
            return result

        self.logger.info("workflow.group.started", group=group.id, members=len(group.steps))
        results = await asyncio.gather(*(run_member(step) for step in group.steps))

        successes = sum(1 for r in results if r.status == StepStatus.SUCCESS)
        failures = [r for r in results if r.status == StepStatus.ERROR]
        ok = successes >= group.min_success

        group_result = StepResult(
            step_id=group.id,
            status=StepStatus.SUCCESS if ok else StepStatus.ERROR,
            output="\n\n".join(r.output for r in results if r.status == StepStatus.SUCCESS and r.output),
            data={
                "successes": successes,
                "min_success": group.min_success,
                "outputs": {r.step_id.split(".", 1)[1]: r.output for r in results},
            },
            error=None
            if ok
            else (
                f"Group '{group.id}': {successes}/{len(results)} succeeded, "
                f"{group.min_success} required; "
                + "; ".join(f"{r.step_id}: {r.error}" for r in failures)
            ),
            attempts=max((r.attempts for r in results), default=0),
        )
        self._record(report, group_result)
        self.logger.info(
            "workflow.group.settled",
            group=group.id,
            successes=successes,
            min_success=group.min_success,
            status=group_result.status.value,
            on_error=group.error_policy.on_error.value,
        )
        return group_result

    async def _run_step(
        self,
        step: Step,
        key: str,
        input_text: str,
        results: Mapping[str, StepResult],
        cancel: CancellationToken | None,
    ) -> StepResult:
        if step.when:
            try:
                should_run = evaluate_condition(step.when, input_text, results)
            except TemplateResolutionError as e:
                return StepResult(step_id=key, status=StepStatus.ERROR, error=str(e))
            if not should_run:
                self.logger.info("workflow.step.skipped", step=key, when=step.when)
                return StepResult(step_id=key, status=StepStatus.SKIPPED)

        try:
            prompt = render_template(step.input, input_text, results)
        except TemplateResolutionError as e:
            return StepResult(step_id=key, status=StepStatus.ERROR, error=str(e))

        last_error = ""
        for attempt in range(1, step.retry.max_attempts + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                output, data = await self._execute(step, prompt, results)
                self.logger.info("workflow.step.succeeded", step=key, attempt=attempt)
                return StepResult(
                    step_id=key,
                    status=StepStatus.SUCCESS,
                    output=output,
                    data=data,
                    attempts=attempt,
                )
            except AbortError:
                raise
            except Exception as e:
                last_error = str(e)
                self.logger.warning(
                    "workflow.step.attempt_failed",
                    step=key,
                    attempt=attempt,
                    max_attempts=step.retry.max_attempts,
                    error=last_error,
                    error_type=type(e).__name__,
                )
                if attempt < step.retry.max_attempts and step.retry.backoff_seconds:
                    await asyncio.sleep(step.retry.backoff_seconds * 2 ** (attempt - 1))

        return StepResult(
            step_id=key,
            status=StepStatus.ERROR,
            error=last_error,
            attempts=step.retry.max_attempts,
        )

    async def _execute(
        self,
        step: Step,
        prompt: str,
        results: Mapping[str, StepResult],
    ) -> tuple[str, dict[str, Any]]:
        if step.action:
            handler = self.actions.get(step.action)
            if handler is None:
                raise StepExecutionError(step.id, f"Unknown action '{step.action}'")
            return self._normalize_action_result(step, await handler(prompt, results))

        agent = await self._resolve_agent(step, prompt)
        run = await self.runner.run(agent, prompt, None)
        data: dict[str, Any] = dict(run.data)

        if run.success and run.handoff_to and self.handoff_manager is not None:
            chain = await self.handoff_manager.run_chain(
                HandoffRequest.start(agent.name, run.handoff_to, reason=run.handoff_reason),
                prompt,
                self.runner,
                context=run.messages,
                source_result=run,
            )
            run = chain.result
            data.update(run.data)
            data["handoff_chain"] = list(chain.chain)
            data["correlation_id"] = chain.correlation_id
            if chain.rejection is not None:
                data["handoff_declined"] = chain.rejection.reason.value

        if not run.success:
            raise StepExecutionError(step.id, run.error or "agent turn failed")

        data["agent"] = run.agent
        return run.output, data

    async def _resolve_agent(self, step: Step, prompt: str) -> AgentDefinition:
        if step.agent:
            agent = self.registry.get(step.agent)
            if agent is None:
                raise UnknownAgentError(step.agent)
            return agent

        name = None
        if self.router is not None:
            decision = await self.router.route(
                prompt, self.registry.list_agents(), self.routing_strategy
            )
            name = decision.agent if decision else None
        name = name or self.default_agent
        agent = self.registry.get(name) if name else None
        if agent is None:
            raise NoMatchError(prompt)
        return agent

    @staticmethod
    def _normalize_action_result(step: Step, value: Any) -> tuple[str, dict[str, Any]]:
        if isinstance(value, Mapping):
            if value.get("success") is False:
                raise StepExecutionError(step.id, str(value.get("error", "action failed")))
            return str(value.get("output", "")), dict(value.get("data") or {})
        return ("" if value is None else str(value)), {}

    def _record(self, report: WorkflowReport, result: StepResult) -> None:
        report.results[result.step_id] = result
        emit(
            self.audit_sink,
            "workflow.step.completed",
            workflow=report.workflow,
            step=result.step_id,
            status=result.status.value,
            attempts=result.attempts,
            error=result.error,
        )
