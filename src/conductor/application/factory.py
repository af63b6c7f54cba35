"""
Application Layer - Orchestrator Factory

Wires the infrastructure adapters (LiteLLM model service, YAML definition
stores, file tools, structlog audit sink) into an Orchestrator according to
ConductorSettings.
"""

from pathlib import Path

import structlog

from conductor.application.orchestrator import Orchestrator
from conductor.application.settings import ConductorSettings
from conductor.core.domain.agents import AgentDefinition
from conductor.core.domain.turn import ApprovalHandler
from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.model import ModelServiceProtocol
from conductor.infrastructure.audit.structlog_sink import StructlogAuditSink
from conductor.infrastructure.llm.litellm_model_service import LiteLLMModelService
from conductor.infrastructure.registry.memory_registry import (
    InMemoryAgentRegistry,
    InMemoryWorkflowStore,
)
from conductor.infrastructure.tools.file_tools import ReadFileTool, ReplaceTool, WriteFileTool
from conductor.infrastructure.tools.registry_executor import ToolRegistryExecutor

logger = structlog.get_logger().bind(component="factory")


def default_agent(name: str) -> AgentDefinition:
    """Catch-all agent used when no agent file is configured."""
    return AgentDefinition(
        name=name,
        title="General Assistant",
        description="Handles any request no specialist agent claims",
    )


def build_agent_registry(settings: ConductorSettings) -> InMemoryAgentRegistry:
    if settings.agents_file:
        registry = InMemoryAgentRegistry.from_yaml(settings.agents_file)
        if settings.default_agent not in registry:
            logger.warning("factory.default_agent_missing", default_agent=settings.default_agent)
        return registry
    return InMemoryAgentRegistry([default_agent(settings.default_agent)])


def build_workflow_store(settings: ConductorSettings) -> InMemoryWorkflowStore:
    if settings.workflows_file:
        return InMemoryWorkflowStore.from_yaml(settings.workflows_file)
    return InMemoryWorkflowStore()


def build_tool_executor(settings: ConductorSettings) -> ToolRegistryExecutor:
    root = Path(settings.workspace_root)
    return ToolRegistryExecutor([ReadFileTool(root), WriteFileTool(root), ReplaceTool(root)])


def build_orchestrator(
    settings: ConductorSettings | None = None,
    model_service: ModelServiceProtocol | None = None,
    audit_sink: AuditSinkProtocol | None = None,
    approval_handler: ApprovalHandler | None = None,
) -> Orchestrator:
    """
    Create an Orchestrator from settings.

    Args:
        settings: Runtime settings (environment defaults when omitted)
        model_service: Replaces the LiteLLM model service
        audit_sink: Replaces the structlog audit sink
        approval_handler: Asked for tool calls that need approval
    """
    settings = settings or ConductorSettings()
    orchestrator = Orchestrator(
        registry=build_agent_registry(settings),
        model_service=model_service or LiteLLMModelService(settings.llm),
        tool_executor=build_tool_executor(settings),
        workflow_store=build_workflow_store(settings),
        settings=settings,
        audit_sink=audit_sink or StructlogAuditSink(),
        approval_handler=approval_handler,
    )
    logger.info(
        "factory.orchestrator_created",
        agents=len(orchestrator.registry.list_agents()),
        default_agent=settings.default_agent,
        routing_strategy=settings.routing_strategy.value,
    )
    return orchestrator
