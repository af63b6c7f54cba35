"""
Definition schemas.

Pydantic models validating raw agent and workflow mappings (parsed YAML or
plain dicts) before they are turned into the frozen domain definitions.

Workflow entries are steps, or parallel groups recognised by their
`parallel` key:

    steps:
      - id: plan
        agent: architect
      - id: reviews
        parallel:
          - {id: security, agent: security}
          - {id: style, agent: reviewer}
        on_error: continue
        min_success: 1
"""

from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from conductor.core.domain.agents import (
    AgentDefinition,
    AgentTriggers,
    ContextMode,
    HandoffRule,
    ToolPolicy,
)
from conductor.core.domain.errors import DefinitionError
from conductor.core.domain.workflow import (
    ErrorAction,
    ErrorPolicy,
    ParallelGroup,
    RetryPolicy,
    Step,
    WorkflowDefinition,
)


class TriggersSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    keywords: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    priority: int = Field(default=0, ge=0, le=100)


class ToolPolicySchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)


class HandoffSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str
    condition: str = ""
    include_context: bool = False


class AgentSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    system_prompt: str = ""
    context_mode: ContextMode = ContextMode.ISOLATED
    triggers: TriggersSchema = Field(default_factory=TriggersSchema)
    tools: ToolPolicySchema = Field(default_factory=ToolPolicySchema)
    handoffs: list[HandoffSchema] = Field(default_factory=list)

    def to_domain(self) -> AgentDefinition:
        return AgentDefinition(
            name=self.name,
            title=self.title,
            description=self.description,
            system_prompt=self.system_prompt,
            context_mode=self.context_mode,
            triggers=AgentTriggers(
                keywords=frozenset(self.triggers.keywords),
                patterns=tuple(self.triggers.patterns),
                priority=self.triggers.priority,
            ),
            tool_policy=ToolPolicy(
                allow=frozenset(self.tools.allow), deny=frozenset(self.tools.deny)
            ),
            handoffs=tuple(
                HandoffRule(to=h.to, condition=h.condition, include_context=h.include_context)
                for h in self.handoffs
            ),
        )


class RetrySchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retries: int = Field(default=0, ge=0)
    backoff_seconds: float = Field(default=0.0, ge=0)


class StepSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    agent: str | None = None
    action: str | None = None
    input: str = "${workflow.input}"
    when: str | None = None
    retry: RetrySchema = Field(default_factory=RetrySchema)

    @field_validator("retry", mode="before")
    @classmethod
    def _retry_shorthand(cls, value: Any) -> Any:
        # `retry: 2` is short for `retry: {retries: 2}`
        if isinstance(value, int):
            return {"retries": value}
        return value

    def to_domain(self) -> Step:
        return Step(
            id=self.id,
            agent=self.agent,
            action=self.action,
            input=self.input,
            when=self.when,
            retry=RetryPolicy(
                retries=self.retry.retries, backoff_seconds=self.retry.backoff_seconds
            ),
        )


class ParallelGroupSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    parallel: list[StepSchema]
    on_error: ErrorAction = ErrorAction.ABORT
    min_success: int | None = None

    def to_domain(self) -> ParallelGroup:
        return ParallelGroup(
            id=self.id,
            steps=tuple(step.to_domain() for step in self.parallel),
            error_policy=ErrorPolicy(on_error=self.on_error, min_success=self.min_success),
        )


class WorkflowSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    on_error: ErrorAction = ErrorAction.ABORT
    timeout_seconds: float | None = Field(default=None, gt=0)
    steps: list[Union[ParallelGroupSchema, StepSchema]]

    @field_validator("steps", mode="before")
    @classmethod
    def _tag_entries(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        entries = []
        for item in value:
            if isinstance(item, dict) and "parallel" in item:
                entries.append(ParallelGroupSchema.model_validate(item))
            elif isinstance(item, dict):
                entries.append(StepSchema.model_validate(item))
            else:
                entries.append(item)
        return entries

    def to_domain(self) -> WorkflowDefinition:
        return WorkflowDefinition(
            name=self.name,
            description=self.description,
            on_error=self.on_error,
            timeout_seconds=self.timeout_seconds,
            steps=tuple(entry.to_domain() for entry in self.steps),
        )


def parse_agent(data: dict[str, Any]) -> AgentDefinition:
    """Validate one agent mapping; raises DefinitionError."""
    try:
        return AgentSchema.model_validate(data).to_domain()
    except ValidationError as e:
        raise DefinitionError(f"Invalid agent definition {data.get('name', '?')!r}: {e}") from e


def parse_workflow(data: dict[str, Any]) -> WorkflowDefinition:
    """Validate one workflow mapping; raises DefinitionError."""
    try:
        return WorkflowSchema.model_validate(data).to_domain()
    except ValidationError as e:
        raise DefinitionError(f"Invalid workflow definition {data.get('name', '?')!r}: {e}") from e
