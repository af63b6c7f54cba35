"""Audit sinks: structlog output and an in-memory recorder."""

import structlog

from conductor.core.domain.events import AuditEvent


class StructlogAuditSink:
    """Writes every audit event as a structured log line."""

    def __init__(self, logger_name: str = "conductor.audit"):
        self.logger = structlog.get_logger(logger_name).bind(component="audit")

    def record(self, event: AuditEvent) -> None:
        self.logger.info(
            event.kind,
            correlation_id=event.correlation_id,
            timestamp=event.timestamp.isoformat(),
            **event.payload,
        )


class MemoryAuditSink:
    """Keeps events in a list; used by the CLI summaries and by tests."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[AuditEvent]:
        return [e for e in self.events if e.kind == kind]


class CompositeAuditSink:
    """Fans events out to several sinks."""

    def __init__(self, *sinks) -> None:
        self.sinks = list(sinks)

    def record(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            sink.record(event)
