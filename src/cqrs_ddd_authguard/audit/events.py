"""Security events emitted by the guard and the MFA orchestrator.

The core only emits; storage and querying belong to an external sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SecurityEventType(Enum):
    """Types of security events.

    Event naming follows the pattern: `security.<area>.<action>`
    """

    # MFA lifecycle
    MFA_SETUP_INITIATED = "security.mfa.setup_initiated"
    MFA_ENABLED = "security.mfa.enabled"
    MFA_VERIFIED = "security.mfa.verified"
    MFA_FAILED = "security.mfa.failed"
    MFA_DISABLED = "security.mfa.disabled"

    # Backup codes
    BACKUP_CODE_USED = "security.backup_code.used"
    BACKUP_CODES_REGENERATED = "security.backup_code.regenerated"

    # Abuse guard
    RATE_LIMIT_EXCEEDED = "security.ratelimit.exceeded"
    RATE_LIMIT_DEGRADED = "security.ratelimit.degraded"

    SUSPICIOUS_ACTIVITY = "security.suspicious_activity"
    INTERNAL_ERROR = "security.internal_error"


class SecurityEventSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class SecurityEvent:
    """A single security event.

    Attributes:
        event_type: What happened.
        severity: How much attention it deserves.
        caller_ip: Client IP address, if known.
        subject_id: Account the event concerns, if known.
        details: Event-specific data. Never contains secrets or codes.
        timestamp: When the event occurred (UTC).
    """

    event_type: SecurityEventType
    severity: SecurityEventSeverity = SecurityEventSeverity.INFO
    caller_ip: str | None = None
    subject_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def timestamp_iso(self) -> str:
        return self.timestamp.isoformat()

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "type": self.event_type.value,
            "severity": self.severity.value,
            "caller_ip": self.caller_ip,
            "subject_id": self.subject_id,
            "details": self.details,
            "timestamp": self.timestamp_iso,
        }


__all__: list[str] = [
    "SecurityEventType",
    "SecurityEventSeverity",
    "SecurityEvent",
]
