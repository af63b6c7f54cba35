"""Protocols for the agent and workflow definition stores."""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from conductor.core.domain.agents import AgentDefinition
    from conductor.core.domain.workflow import WorkflowDefinition


class AgentRegistryProtocol(Protocol):
    """Supplies immutable agent definitions in declaration order."""

    def get(self, name: str) -> "AgentDefinition | None":
        ...

    def list_agents(self) -> list["AgentDefinition"]:
        ...

    def __contains__(self, name: object) -> bool:
        ...


class WorkflowStoreProtocol(Protocol):
    """Supplies immutable workflow definitions."""

    def get(self, name: str) -> "WorkflowDefinition | None":
        ...

    def list_workflows(self) -> list["WorkflowDefinition"]:
        ...
