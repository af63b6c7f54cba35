"""
Workflow Definitions and Results

Declarative multi-step pipelines. A WorkflowDefinition is an ordered list of
Step and ParallelGroup entries, validated when it is built (unique ids, sane
error policies) and read-only while it runs.

Steps pass data to each other through ${...} templates resolved against the
StepResults accumulated so far:

    ${workflow.input}                 the text the run was started with
    ${stepId.output}                  output of a step
    ${stepId.status}                  success / error / skipped
    ${stepId.data.key}                structured data produced by a step
    ${groupId.subStepId.output}       output of a parallel group member
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from conductor.core.domain.errors import (
    DefinitionError,
    TemplateResolutionError,
    WorkflowFailedError,
)

TEMPLATE_PATTERN = re.compile(r"\$\{([^}]+)\}")
FALSY_VALUES = frozenset({"", "false", "0", "no", "none", "null"})


class ErrorAction(str, Enum):
    ABORT = "abort"
    CONTINUE = "continue"


class StepStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RetryPolicy:
    """Extra attempts after a failed first attempt."""

    retries: int = 0
    backoff_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise DefinitionError(f"retries must be >= 0, got {self.retries}")
        if self.backoff_seconds < 0:
            raise DefinitionError("backoff_seconds must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


@dataclass(frozen=True)
class Step:
    """
    One unit of work.

    A step runs either a registered agent, a named action, or (when neither
    is given) the agent the router selects for its input.
    """

    id: str
    agent: str | None = None
    action: str | None = None
    input: str = "${workflow.input}"
    when: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not self.id or "." in self.id:
            raise DefinitionError(f"Invalid step id {self.id!r} (must be non-empty, without '.')")
        if self.agent and self.action:
            raise DefinitionError(f"Step '{self.id}' cannot set both agent and action")

    @property
    def routed(self) -> bool:
        return not self.agent and not self.action


@dataclass(frozen=True)
class ErrorPolicy:
    on_error: ErrorAction = ErrorAction.ABORT
    min_success: int | None = None


@dataclass(frozen=True)
class ParallelGroup:
    """Steps dispatched concurrently; the group succeeds when enough members do."""

    id: str
    steps: tuple[Step, ...]
    error_policy: ErrorPolicy = field(default_factory=ErrorPolicy)

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.id or "." in self.id:
            raise DefinitionError(f"Invalid group id {self.id!r} (must be non-empty, without '.')")
        if not self.steps:
            raise DefinitionError(f"Parallel group '{self.id}' has no steps")
        min_success = self.error_policy.min_success
        if min_success is not None and not 1 <= min_success <= len(self.steps):
            raise DefinitionError(
                f"Parallel group '{self.id}': min_success must be within 1-{len(self.steps)}, "
                f"got {min_success}"
            )

    @property
    def min_success(self) -> int:
        """Members that must succeed; defaults to all of them."""
        return self.error_policy.min_success or len(self.steps)


WorkflowEntry = Union[Step, ParallelGroup]


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    A named pipeline of steps and parallel groups.

    Attributes:
        name: Workflow identifier
        steps: Ordered entries
        description: What the workflow does
        on_error: Policy for failing sequential steps (default abort)
        timeout_seconds: Abort the whole run after this many seconds
    """

    name: str
    steps: tuple[WorkflowEntry, ...]
    description: str = ""
    on_error: ErrorAction = ErrorAction.ABORT
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.name.strip():
            raise DefinitionError("Workflow requires a name")
        if not self.steps:
            raise DefinitionError(f"Workflow '{self.name}' has no steps")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise DefinitionError("timeout_seconds must be positive")

        seen: set[str] = set()
        for entry in self.steps:
            ids = [entry.id]
            if isinstance(entry, ParallelGroup):
                ids.extend(step.id for step in entry.steps)
            for entry_id in ids:
                if entry_id == "workflow":
                    raise DefinitionError("'workflow' is a reserved step id")
                if entry_id in seen:
                    raise DefinitionError(
                        f"Duplicate step id '{entry_id}' in workflow '{self.name}'"
                    )
                seen.add(entry_id)


@dataclass
class StepResult:
    """Outcome of one step, written once by the executor."""

    step_id: str
    status: StepStatus
    output: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "output": self.output,
            "data": self.data,
            "error": self.error,
            "attempts": self.attempts,
        }


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def resolve_reference(
    reference: str,
    workflow_input: str,
    results: Mapping[str, StepResult],
) -> str:
    """Resolve a single reference (the text between ${ and })."""
    parts = [p.strip() for p in reference.strip().split(".")]
    if not all(parts):
        raise TemplateResolutionError(reference, "malformed reference")

    if parts == ["workflow", "input"]:
        return workflow_input

    # Prefer the qualified key of a parallel member (groupId.stepId)
    if len(parts) >= 3 and f"{parts[0]}.{parts[1]}" in results:
        result = results[f"{parts[0]}.{parts[1]}"]
        rest = parts[2:]
    elif parts[0] in results:
        result = results[parts[0]]
        rest = parts[1:]
    else:
        raise TemplateResolutionError(reference, "no result for step")

    if rest == ["output"]:
        return result.output
    if rest == ["status"]:
        return result.status.value
    if rest and rest[0] == "data":
        value: Any = result.data
        for key in rest[1:]:
            if isinstance(value, Mapping) and key in value:
                value = value[key]
            elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
                value = value[int(key)]
            else:
                raise TemplateResolutionError(reference, f"missing data key '{key}'")
        return _stringify(value)

    raise TemplateResolutionError(reference, "expected output, status or data")


def render_template(
    template: str,
    workflow_input: str,
    results: Mapping[str, StepResult],
) -> str:
    """Substitute every ${...} reference in template."""
    return TEMPLATE_PATTERN.sub(
        lambda m: resolve_reference(m.group(1), workflow_input, results), template
    )


def evaluate_condition(
    condition: str,
    workflow_input: str,
    results: Mapping[str, StepResult],
) -> bool:
    """
    Evaluate a `when` template.

    A "==" / "!=" written in the condition itself (outside any ${...})
    compares the two rendered sides; operators inside substituted step
    output are plain text. Without an operator the rendered text is false
    when empty or one of false/0/no/none/null.
    """
    masked = TEMPLATE_PATTERN.sub(lambda m: " " * len(m.group(0)), condition)
    positions = [(masked.find(op), op) for op in ("!=", "==") if op in masked]
    if positions:
        index, operator = min(positions)
        left, right = (
            render_template(side, workflow_input, results).strip().strip("'\"")
            for side in (condition[:index], condition[index + len(operator):])
        )
        return (left == right) if operator == "==" else (left != right)
    rendered = render_template(condition, workflow_input, results)
    return rendered.strip().lower() not in FALSY_VALUES


@dataclass
class WorkflowReport:
    """
    Final report of a workflow run.

    Failed and aborted runs still carry every StepResult produced before the
    run stopped; not_run lists the entries that were never dispatched.
    """

    workflow: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    results: dict[str, StepResult] = field(default_factory=dict)
    error: str | None = None
    errors: list[str] = field(default_factory=list)
    not_run: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    def output(self) -> str:
        """Output of the last step that produced one."""
        for result in reversed(list(self.results.values())):
            if result.status == StepStatus.SUCCESS and result.output:
                return result.output
        return ""

    def raise_for_status(self) -> None:
        if self.status in (WorkflowStatus.FAILED, WorkflowStatus.ABORTED):
            raise WorkflowFailedError(self.workflow, self.status.value, self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow,
            "status": self.status.value,
            "error": self.error,
            "errors": list(self.errors),
            "not_run": list(self.not_run),
            "duration_seconds": self.duration_seconds,
            "results": {key: r.to_dict() for key, r in self.results.items()},
        }
