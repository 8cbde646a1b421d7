"""Abuse guard: tiered sliding-window rate limiting."""

from __future__ import annotations

from .memory import InMemorySlidingWindowStore
from .ports import ISlidingWindowStore, WindowSnapshot
from .redis_store import RedisSlidingWindowStore
from .service import AbuseGuard
from .tiers import (
    DEFAULT_POLICIES,
    TIER_MESSAGES,
    RateLimitResult,
    RateLimitTier,
    SmsLimitResult,
    TierPolicy,
)

__all__: list[str] = [
    # Tiers
    "RateLimitTier",
    "TierPolicy",
    "DEFAULT_POLICIES",
    "TIER_MESSAGES",
    "RateLimitResult",
    "SmsLimitResult",
    # Stores
    "ISlidingWindowStore",
    "WindowSnapshot",
    "InMemorySlidingWindowStore",
    "RedisSlidingWindowStore",
    # Service
    "AbuseGuard",
]
