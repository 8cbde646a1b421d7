"""Security event model and sinks."""

from __future__ import annotations

from .events import SecurityEvent, SecurityEventSeverity, SecurityEventType
from .sinks import (
    InMemorySecurityEventSink,
    ISecurityEventSink,
    LoggingSecurityEventSink,
    SecurityEventEmitter,
)

__all__: list[str] = [
    # Events
    "SecurityEventType",
    "SecurityEventSeverity",
    "SecurityEvent",
    # Sinks
    "ISecurityEventSink",
    "InMemorySecurityEventSink",
    "LoggingSecurityEventSink",
    "SecurityEventEmitter",
]
