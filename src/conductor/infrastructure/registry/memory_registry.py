"""
In-memory definition stores.

Definitions are validated once, when they are loaded, and are read-only
afterwards. YAML files hold a top-level `agents:` or `workflows:` list.
"""

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import yaml

from conductor.core.domain.agents import AgentDefinition
from conductor.core.domain.errors import DefinitionError
from conductor.core.domain.workflow import WorkflowDefinition
from conductor.infrastructure.registry.schemas import parse_agent, parse_workflow

logger = structlog.get_logger().bind(component="registry")


def _load_yaml_list(path: Path, key: str) -> list[dict[str, Any]]:
    if not path.exists():
        raise DefinitionError(f"Definition file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise DefinitionError(f"Invalid YAML in {path}: {e}") from e

    items = data.get(key, []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise DefinitionError(f"'{key}' in {path} must be a list")
    return items


class InMemoryAgentRegistry:
    """Agent definitions in declaration order."""

    def __init__(self, agents: Iterable[AgentDefinition] = ()):
        self._agents: dict[str, AgentDefinition] = {}
        for agent in agents:
            if agent.name in self._agents:
                raise DefinitionError(f"Duplicate agent '{agent.name}'")
            self._agents[agent.name] = agent

        unknown = sorted(
            {
                rule.to
                for agent in self._agents.values()
                for rule in agent.handoffs
                if rule.to not in self._agents
            }
        )
        if unknown:
            # Rejected at handoff time as unknown_agent
            logger.warning("registry.unknown_handoff_targets", targets=unknown)

    @classmethod
    def from_mappings(cls, items: Iterable[dict[str, Any]]) -> "InMemoryAgentRegistry":
        return cls(parse_agent(item) for item in items)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryAgentRegistry":
        path = Path(path)
        registry = cls.from_mappings(_load_yaml_list(path, "agents"))
        logger.info("registry.agents_loaded", path=str(path), count=len(registry))
        return registry

    def get(self, name: str) -> AgentDefinition | None:
        return self._agents.get(name)

    def list_agents(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)


class InMemoryWorkflowStore:
    """Workflow definitions by name."""

    def __init__(self, workflows: Iterable[WorkflowDefinition] = ()):
        self._workflows: dict[str, WorkflowDefinition] = {}
        for workflow in workflows:
            if workflow.name in self._workflows:
                raise DefinitionError(f"Duplicate workflow '{workflow.name}'")
            self._workflows[workflow.name] = workflow

    @classmethod
    def from_mappings(cls, items: Iterable[dict[str, Any]]) -> "InMemoryWorkflowStore":
        return cls(parse_workflow(item) for item in items)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryWorkflowStore":
        path = Path(path)
        store = cls.from_mappings(_load_yaml_list(path, "workflows"))
        logger.info("registry.workflows_loaded", path=str(path), count=len(store))
        return store

    def get(self, name: str) -> WorkflowDefinition | None:
        return self._workflows.get(name)

    def list_workflows(self) -> list[WorkflowDefinition]:
        return list(self._workflows.values())

    def __len__(self) -> int:
        return len(self._workflows)
