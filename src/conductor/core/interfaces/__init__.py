"""Protocols for the collaborators of the orchestration core."""

from conductor.core.interfaces.audit import AuditSinkProtocol
from conductor.core.interfaces.model import ModelServiceProtocol
from conductor.core.interfaces.registry import AgentRegistryProtocol, WorkflowStoreProtocol
from conductor.core.interfaces.runner import AgentRunnerProtocol, AgentRunResult
from conductor.core.interfaces.tools import ToolExecutorProtocol, ToolProtocol

__all__ = [
    "AgentRegistryProtocol",
    "AgentRunResult",
    "AgentRunnerProtocol",
    "AuditSinkProtocol",
    "ModelServiceProtocol",
    "ToolExecutorProtocol",
    "ToolProtocol",
    "WorkflowStoreProtocol",
]
