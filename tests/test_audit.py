"""Tests for security events and sinks."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

import pytest

from cqrs_ddd_authguard.audit import (
    InMemorySecurityEventSink,
    LoggingSecurityEventSink,
    SecurityEvent,
    SecurityEventEmitter,
    SecurityEventSeverity,
    SecurityEventType,
)
from cqrs_ddd_authguard.correlation import correlation_scope

WHEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_event(**overrides: object) -> SecurityEvent:
    values: dict[str, object] = {
        "event_type": SecurityEventType.MFA_ENABLED,
        "caller_ip": "203.0.113.7",
        "subject_id": "user-1",
        "details": {"method": "totp"},
        "timestamp": WHEN,
    }
    values.update(overrides)
    return SecurityEvent(**values)  # type: ignore[arg-type]


class BrokenSink:
    async def record(self, event: SecurityEvent) -> None:
        raise RuntimeError("sink offline")


class TestSecurityEvent:
    def test_to_dict(self) -> None:
        assert make_event().to_dict() == {
            "type": "security.mfa.enabled",
            "severity": "INFO",
            "caller_ip": "203.0.113.7",
            "subject_id": "user-1",
            "details": {"method": "totp"},
            "timestamp": "2024-05-01T12:00:00+00:00",
        }

    def test_defaults(self) -> None:
        event = SecurityEvent(SecurityEventType.SUSPICIOUS_ACTIVITY)
        assert event.severity is SecurityEventSeverity.INFO
        assert event.details == {}
        assert event.timestamp.tzinfo is not None


class TestSinks:
    """Test event delivery."""

    @pytest.mark.asyncio
    async def test_in_memory_sink_filters_by_type(self) -> None:
        sink = InMemorySecurityEventSink()
        await sink.record(make_event())
        await sink.record(make_event(event_type=SecurityEventType.MFA_FAILED))

        assert len(sink.of_type(SecurityEventType.MFA_FAILED)) == 1

        sink.clear()
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_logging_sink_writes_json_at_severity(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        sink = LoggingSecurityEventSink()
        event = make_event(severity=SecurityEventSeverity.CRITICAL)

        with caplog.at_level(logging.INFO, logger="cqrs_ddd.authguard.security"):
            with correlation_scope("req-42"):
                await sink.record(event)

        [record] = caplog.records
        assert record.levelno == logging.CRITICAL
        entry = json.loads(record.getMessage())
        assert entry["type"] == "security.mfa.enabled"
        assert entry["correlation_id"] == "req-42"

    @pytest.mark.asyncio
    async def test_emitter_survives_failing_sink(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        healthy = InMemorySecurityEventSink()
        emitter = SecurityEventEmitter([BrokenSink()])
        emitter.add_sink(healthy)

        with caplog.at_level(logging.WARNING, logger="cqrs_ddd.authguard.audit"):
            await emitter.emit(make_event())

        assert len(healthy.events) == 1
        assert "BrokenSink" in caplog.text
