"""
Domain Errors

Exception hierarchy for the orchestration core. Validation errors (cyclic
dependencies, invalid definitions, illegal state transitions) are raised
eagerly before anything is mutated. Execution errors (tool and step failures)
are normally recorded on result objects instead of being raised; the
exceptions below exist for callers that ask for them explicitly.
"""

from typing import Any


class ConductorError(Exception):
    """Base class for all errors raised by the orchestration core."""


class DefinitionError(ConductorError):
    """An agent or workflow definition failed validation at load time."""


class NoMatchError(ConductorError):
    """No agent could be selected for a request."""

    def __init__(self, text: str):
        super().__init__(f"No agent matched request: {text[:80]!r}")
        self.text = text


class UnknownAgentError(ConductorError):
    """A name did not resolve to a registered agent."""

    def __init__(self, agent: str):
        super().__init__(f"Unknown agent: {agent}")
        self.agent = agent


class WorkflowError(ConductorError):
    """Base class for workflow execution errors."""


class TemplateResolutionError(WorkflowError):
    """A ${...} reference in a step template could not be resolved."""

    def __init__(self, reference: str, reason: str = "unresolved reference"):
        super().__init__(f"Cannot resolve ${{{reference}}}: {reason}")
        self.reference = reference
        self.reason = reason


class StepExecutionError(WorkflowError):
    """A workflow step failed after all retry attempts."""

    def __init__(self, step_id: str, message: str):
        super().__init__(f"Step '{step_id}' failed: {message}")
        self.step_id = step_id


class WorkflowFailedError(WorkflowError):
    """Raised by WorkflowReport.raise_for_status() for failed or aborted runs."""

    def __init__(self, workflow: str, status: str, errors: list[str]):
        detail = "; ".join(errors) if errors else "no error details"
        super().__init__(f"Workflow '{workflow}' {status}: {detail}")
        self.workflow = workflow
        self.status = status
        self.errors = errors


class SchedulerError(ConductorError):
    """Base class for todo scheduling errors."""


class CyclicDependencyError(SchedulerError):
    """The todo dependency graph has no valid execution order."""

    def __init__(self, remaining: list[str]):
        super().__init__(
            "Cyclic dependency detected between todos: " + ", ".join(remaining)
        )
        self.remaining = remaining


class UnmetDependencyError(SchedulerError):
    """A todo was started before all of its dependencies completed."""

    def __init__(self, todo_id: str, unmet: list[str]):
        super().__init__(
            f"Todo '{todo_id}' has unmet dependencies: {', '.join(unmet)}"
        )
        self.todo_id = todo_id
        self.unmet = unmet


class TodoNotFoundError(SchedulerError):
    """A todo id is not known to the session."""

    def __init__(self, todo_id: str):
        super().__init__(f"Todo not found: {todo_id}")
        self.todo_id = todo_id


class BatchAlreadyActiveError(SchedulerError):
    """A batch run was started while another one is still active."""


class ToolCallError(ConductorError):
    """Base class for tool-call lifecycle errors."""


class InvalidToolCallTransition(ToolCallError):
    """A tool call was moved to a status its current status cannot reach."""

    def __init__(self, call_id: str, current: Any, target: Any):
        super().__init__(
            f"Tool call '{call_id}' cannot move from {current} to {target}"
        )
        self.call_id = call_id
        self.current = current
        self.target = target


class ToolExecutionError(ToolCallError):
    """A tool failed while executing; recorded on the call, never fatal."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"Tool '{tool}' failed: {message}")
        self.tool = tool
        self.message = message


class AbortError(ConductorError):
    """The user cancelled the current operation."""

    def __init__(self, message: str = "Operation cancelled by user"):
        super().__init__(message)
