"""Rate-limit tiers, their policies and decision records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping


class RateLimitTier(str, Enum):
    """Named budgets. Each tier has its own key namespace."""

    AUTH_OPERATIONS = "auth_operations"
    SMS_IP = "sms_ip"
    SMS_SUBJECT = "sms_subject"
    GENERAL = "general"
    AUTHENTICATED = "authenticated"
    DATA_EXPORT = "data_export"
    AUTH_LOCKOUT = "auth_lockout"


@dataclass(frozen=True)
class TierPolicy:
    """``max_requests`` admitted per sliding ``window_seconds``."""

    max_requests: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


DEFAULT_POLICIES: Mapping[RateLimitTier, TierPolicy] = MappingProxyType(
    {
        RateLimitTier.AUTH_OPERATIONS: TierPolicy(10, 10),
        RateLimitTier.SMS_IP: TierPolicy(5, 60 * 60),
        RateLimitTier.SMS_SUBJECT: TierPolicy(3, 60 * 60),
        RateLimitTier.GENERAL: TierPolicy(1000, 60),
        RateLimitTier.AUTHENTICATED: TierPolicy(100, 60),
        RateLimitTier.DATA_EXPORT: TierPolicy(3, 24 * 60 * 60),
        RateLimitTier.AUTH_LOCKOUT: TierPolicy(5, 15 * 60),
    }
)

TIER_MESSAGES: Mapping[RateLimitTier, str] = MappingProxyType(
    {
        RateLimitTier.AUTH_OPERATIONS: (
            "Too many authentication attempts. Please wait 10 seconds."
        ),
        RateLimitTier.SMS_IP: (
            "Too many SMS requests from this network. Please try again later."
        ),
        RateLimitTier.SMS_SUBJECT: (
            "Too many SMS requests for this account. Please try again later."
        ),
        RateLimitTier.GENERAL: "Too many API requests. Please slow down.",
        RateLimitTier.AUTHENTICATED: (
            "Too many operations. Please wait a minute before trying again."
        ),
        RateLimitTier.DATA_EXPORT: (
            "Daily export quota reached. Please try again tomorrow."
        ),
        RateLimitTier.AUTH_LOCKOUT: (
            "Too many failed sign-in attempts. Please try again in 15 minutes."
        ),
    }
)

DEFAULT_MESSAGE = "Too many requests. Please try again later."


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one admission check.

    Attributes:
        success: Whether the request was admitted.
        limit: Tier budget (0 when the decision is degraded).
        remaining: Admissions left in the current window.
        reset_at: Epoch seconds when a slot frees up.
        degraded: True when the store failed and the guard failed open.
    """

    success: bool
    limit: int
    remaining: int
    reset_at: float
    degraded: bool = False

    @property
    def reset_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_iso,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class SmsLimitResult:
    """Combined per-IP and per-subject SMS decision."""

    ip_result: RateLimitResult
    subject_result: RateLimitResult | None = None

    @property
    def success(self) -> bool:
        if not self.ip_result.success:
            return False
        return self.subject_result is None or self.subject_result.success

    @property
    def rejected_tier(self) -> RateLimitTier | None:
        if not self.ip_result.success:
            return RateLimitTier.SMS_IP
        if self.subject_result is not None and not self.subject_result.success:
            return RateLimitTier.SMS_SUBJECT
        return None

    @property
    def message(self) -> str | None:
        tier = self.rejected_tier
        return TIER_MESSAGES[tier] if tier is not None else None


__all__: list[str] = [
    "RateLimitTier",
    "TierPolicy",
    "DEFAULT_POLICIES",
    "TIER_MESSAGES",
    "DEFAULT_MESSAGE",
    "RateLimitResult",
    "SmsLimitResult",
]
