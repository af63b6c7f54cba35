"""Protocol for the display/audit sink."""

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from conductor.core.domain.events import AuditEvent


class AuditSinkProtocol(Protocol):
    """
    Receives route decisions, handoff outcomes, step results and tool call
    transitions for rendering or logging.

    Implementations must return quickly; the core never awaits the sink.
    """

    def record(self, event: "AuditEvent") -> None:
        ...
