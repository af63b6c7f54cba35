"""
Domain Events

Two families of immutable events flow through the core:

- Turn events: the finite sequence produced by the model service for one
  model turn (content chunks, tool call requests, a finish marker, errors).
  The TurnProcessor consumes them in a single loop.
- Audit events: facts reported to the display/audit sink (route decisions,
  handoff outcomes, step results, tool call transitions, batch progress).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

import structlog

from conductor.core.interfaces.audit import AuditSinkProtocol

logger = structlog.get_logger()


class TurnEventType(str, Enum):
    """Kind of event emitted while a model turn is streamed."""

    CONTENT = "content"
    TOOL_CALL_REQUEST = "tool_call_request"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class ContentEvent:
    """A chunk of assistant text."""

    text: str
    type: TurnEventType = TurnEventType.CONTENT


@dataclass(frozen=True)
class ToolCallRequestEvent:
    """The model asked for a tool to be called."""

    call_id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    type: TurnEventType = TurnEventType.TOOL_CALL_REQUEST


@dataclass(frozen=True)
class FinishedEvent:
    """The model finished the turn."""

    reason: str = "stop"
    type: TurnEventType = TurnEventType.FINISHED


@dataclass(frozen=True)
class ErrorEvent:
    """The model service reported an error for this turn."""

    message: str
    type: TurnEventType = TurnEventType.ERROR


TurnEvent = Union[ContentEvent, ToolCallRequestEvent, FinishedEvent, ErrorEvent]


@dataclass(frozen=True)
class AuditEvent:
    """
    A fact reported to the display/audit sink.

    Attributes:
        kind: Dotted event name (e.g. "handoff.accepted")
        payload: Structured details of the event
        correlation_id: Handoff chain identifier, when the event belongs to one
        timestamp: When the event happened
    """

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


def emit(sink: AuditSinkProtocol | None, kind: str, **payload: Any) -> None:
    """
    Report an audit event without ever letting the sink break execution.

    A failing sink is logged and otherwise ignored; the core does not block
    on the display layer.
    """
    if sink is None:
        return
    correlation_id = payload.pop("correlation_id", None)
    event = AuditEvent(kind=kind, payload=payload, correlation_id=correlation_id)
    try:
        sink.record(event)
    except Exception as e:
        logger.warning("audit.sink_failed", kind=kind, error=str(e), error_type=type(e).__name__)
