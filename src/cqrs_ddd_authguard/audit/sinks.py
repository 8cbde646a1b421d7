"""Security event sinks and the fan-out emitter.

Delivery is best effort: a sink that fails never fails the operation that
produced the event.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..correlation import get_correlation_id
from .events import SecurityEventSeverity

if TYPE_CHECKING:
    from .events import SecurityEvent, SecurityEventType

logger = logging.getLogger("cqrs_ddd.authguard.audit")

_LEVELS = {
    SecurityEventSeverity.INFO: logging.INFO,
    SecurityEventSeverity.WARNING: logging.WARNING,
    SecurityEventSeverity.ERROR: logging.ERROR,
    SecurityEventSeverity.CRITICAL: logging.CRITICAL,
}


@runtime_checkable
class ISecurityEventSink(Protocol):
    """Protocol for security event destinations."""

    async def record(self, event: SecurityEvent) -> None:
        ...


class InMemorySecurityEventSink(ISecurityEventSink):
    """Keeps events in a list. For tests and development."""

    def __init__(self) -> None:
        self.events: list[SecurityEvent] = []

    async def record(self, event: SecurityEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: SecurityEventType) -> list[SecurityEvent]:
        return [e for e in self.events if e.event_type is event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingSecurityEventSink(ISecurityEventSink):
    """Writes each event as one JSON log line at the event's severity."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logging.getLogger("cqrs_ddd.authguard.security")

    async def record(self, event: SecurityEvent) -> None:
        entry = event.to_dict()
        entry["correlation_id"] = get_correlation_id()
        self._log.log(_LEVELS[event.severity], json.dumps(entry, default=str))


class SecurityEventEmitter:
    """Fans an event out to every registered sink.

    Example:
        ```python
        emitter = SecurityEventEmitter([LoggingSecurityEventSink()])
        await emitter.emit(SecurityEvent(SecurityEventType.MFA_ENABLED, ...))
        ```
    """

    def __init__(self, sinks: list[ISecurityEventSink] | None = None) -> None:
        self._sinks = list(sinks or [])

    def add_sink(self, sink: ISecurityEventSink) -> None:
        self._sinks.append(sink)

    async def emit(self, event: SecurityEvent) -> None:
        for sink in self._sinks:
            try:
                await sink.record(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Security event delivery to %s failed for %s: %s",
                    type(sink).__name__,
                    event.event_type.value,
                    exc,
                )


__all__: list[str] = [
    "ISecurityEventSink",
    "InMemorySecurityEventSink",
    "LoggingSecurityEventSink",
    "SecurityEventEmitter",
]
