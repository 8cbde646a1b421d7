"""Abuse guard: tiered sliding-window rate limiting that fails open.

An availability control must not become the outage. When the counter store
errors or exceeds ``store_timeout``, ``check_limit`` admits the request,
logs at error level and emits ``RATE_LIMIT_DEGRADED``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING, Any

from ..audit.events import SecurityEvent, SecurityEventSeverity, SecurityEventType
from ..exceptions import RateLimitExceededError
from ..instrumentation import get_hook_registry
from .tiers import (
    DEFAULT_MESSAGE,
    DEFAULT_POLICIES,
    TIER_MESSAGES,
    RateLimitResult,
    RateLimitTier,
    SmsLimitResult,
    TierPolicy,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from ..audit.sinks import SecurityEventEmitter
    from ..instrumentation import HookRegistry
    from .ports import ISlidingWindowStore, WindowSnapshot

logger = logging.getLogger("cqrs_ddd.authguard.ratelimit")

DEGRADED_RESET_SECONDS = 60


class AbuseGuard:
    """Tiered rate limiter over a shared sliding-window store.

    Construct one per application and inject it where needed.

    Example:
        ```python
        guard = AbuseGuard(RedisSlidingWindowStore(redis), events=emitter)

        result = await guard.check_limit(RateLimitTier.AUTH_OPERATIONS, ip)
        if not result.success:
            return too_many_requests(
                guard.message_for(RateLimitTier.AUTH_OPERATIONS),
                headers=guard.rate_limit_headers(result),
            )
        ```
    """

    def __init__(
        self,
        store: ISlidingWindowStore,
        *,
        policies: Mapping[RateLimitTier, TierPolicy] | None = None,
        store_timeout: float = 0.5,
        key_prefix: str = "ratelimit",
        events: SecurityEventEmitter | None = None,
        hook_registry: HookRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            store: Shared counter store.
            policies: Per-tier overrides merged over ``DEFAULT_POLICIES``.
            store_timeout: Upper bound in seconds for every store call.
            key_prefix: Namespace for store keys.
            events: Emitter for rejection and degradation events.
            hook_registry: Instrumentation hooks (defaults to the context's).
            clock: Epoch-seconds clock.
        """
        self._store = store
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self.store_timeout = store_timeout
        self.key_prefix = key_prefix
        self._events = events
        self._hooks = hook_registry
        self._clock = clock
        logger.info(
            "Abuse guard initialised with %s store, timeout=%ss",
            type(store).__name__,
            store_timeout,
        )

    # ── Configuration ────────────────────────────────────────────

    def policy(self, tier: RateLimitTier) -> TierPolicy:
        return self._policies[tier]

    def key(self, tier: RateLimitTier, identifier: str) -> str:
        """Store key; tiers never share a namespace."""
        return f"{self.key_prefix}:{tier.value}:{identifier}"

    @staticmethod
    def message_for(tier: RateLimitTier) -> str:
        return TIER_MESSAGES.get(tier, DEFAULT_MESSAGE)

    # ── Admission ────────────────────────────────────────────────

    async def check_limit(
        self, tier: RateLimitTier, identifier: str
    ) -> RateLimitResult:
        """Count one request for ``(tier, identifier)`` and decide admission.

        Never raises for store faults and never waits longer than
        ``store_timeout`` on the store.
        """
        registry = self._hooks or get_hook_registry()
        return await registry.execute_all(  # type: ignore[no-any-return]
            f"authguard.ratelimit.check.{tier.value}",
            {"tier": tier.value},
            lambda: self._check_limit(tier, identifier),
        )

    async def _check_limit(
        self, tier: RateLimitTier, identifier: str
    ) -> RateLimitResult:
        policy = self._policies[tier]
        now = self._clock()
        try:
            snapshot = await asyncio.wait_for(
                self._store.hit(
                    self.key(tier, identifier),
                    policy.max_requests,
                    policy.window_seconds,
                    now,
                ),
                timeout=self.store_timeout,
            )
        except Exception as exc:  # noqa: BLE001
            return await self._fail_open(tier, identifier, now, exc)

        result = self._to_result(policy, snapshot, now)
        if result.success:
            logger.debug(
                "Admitted %s request (%s remaining)", tier.value, result.remaining
            )
        else:
            logger.warning("Rate limit exceeded for tier %s", tier.value)
            await self._emit(
                SecurityEvent(
                    event_type=SecurityEventType.RATE_LIMIT_EXCEEDED,
                    severity=SecurityEventSeverity.WARNING,
                    details={
                        "tier": tier.value,
                        "identifier": identifier,
                        "limit": result.limit,
                        "reset_at": result.reset_iso,
                    },
                )
            )
        return result

    async def _fail_open(
        self, tier: RateLimitTier, identifier: str, now: float, exc: BaseException
    ) -> RateLimitResult:
        reason = "timeout" if isinstance(exc, asyncio.TimeoutError) else str(exc)
        logger.error(
            "Counter store unavailable for tier %s, failing open: %s",
            tier.value,
            reason or type(exc).__name__,
        )
        await self._emit(
            SecurityEvent(
                event_type=SecurityEventType.RATE_LIMIT_DEGRADED,
                severity=SecurityEventSeverity.ERROR,
                details={
                    "tier": tier.value,
                    "identifier": identifier,
                    "error": type(exc).__name__,
                },
            )
        )
        return RateLimitResult(
            success=True,
            limit=0,
            remaining=0,
            reset_at=now + DEGRADED_RESET_SECONDS,
            degraded=True,
        )

    async def enforce(self, tier: RateLimitTier, identifier: str) -> RateLimitResult:
        """``check_limit`` that raises on rejection.

        Raises:
            RateLimitExceededError: With the tier message and ``retry_after``.
        """
        result = await self.check_limit(tier, identifier)
        if not result.success:
            raise RateLimitExceededError(
                tier,
                result,
                message=self.message_for(tier),
                retry_after=self.retry_after(result),
            )
        return result

    async def check_sms_limits(
        self, ip: str, subject_id: str | None = None
    ) -> SmsLimitResult:
        """Admit an SMS send only if the IP and (when known) subject tiers admit.

        Both budgets are counted for every attempt.
        """
        if subject_id is None:
            ip_result = await self.check_limit(RateLimitTier.SMS_IP, ip)
            return SmsLimitResult(ip_result=ip_result)

        ip_result, subject_result = await asyncio.gather(
            self.check_limit(RateLimitTier.SMS_IP, ip),
            self.check_limit(RateLimitTier.SMS_SUBJECT, subject_id),
        )
        return SmsLimitResult(ip_result=ip_result, subject_result=subject_result)

    async def check_credential_lockout(self, ip: str, email: str) -> RateLimitResult:
        """Count a sign-in attempt against the (ip, email) lockout budget.

        Optional layer on top of ``AUTH_OPERATIONS``: the composite key stops
        one client hammering one account without the limiter looking up the
        account itself.
        """
        normalized = email.strip().lower()
        return await self.check_limit(RateLimitTier.AUTH_LOCKOUT, f"{ip}:{normalized}")

    # ── Administration ───────────────────────────────────────────

    async def reset_limit(self, tier: RateLimitTier, identifier: str) -> None:
        """Clear a window early.

        Raises:
            CounterStoreError: If the store rejects the reset.
        """
        await asyncio.wait_for(
            self._store.reset(self.key(tier, identifier)), timeout=self.store_timeout
        )
        logger.info("Rate limit reset for tier %s", tier.value)

    async def health_check(self) -> bool:
        try:
            return await asyncio.wait_for(
                self._store.ping(), timeout=self.store_timeout
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Counter store health check failed: %s", exc)
            return False

    async def get_stats(
        self, tier: RateLimitTier, identifier: str
    ) -> RateLimitResult | None:
        """Current window state without counting a request.

        Returns None if the store cannot be read.
        """
        policy = self._policies[tier]
        now = self._clock()
        try:
            snapshot = await asyncio.wait_for(
                self._store.peek(
                    self.key(tier, identifier),
                    policy.max_requests,
                    policy.window_seconds,
                    now,
                ),
                timeout=self.store_timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not read rate limit stats: %s", exc)
            return None
        return self._to_result(policy, snapshot, now)

    # ── Response helpers ─────────────────────────────────────────

    def retry_after(self, result: RateLimitResult) -> int:
        """Whole seconds until ``result.reset_at``, never negative."""
        return max(0, math.ceil(result.reset_at - self._clock()))

    @staticmethod
    def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": result.reset_iso,
        }
        if result.degraded:
            headers["X-RateLimit-Status"] = "fallback"
        return headers

    # ── Internals ────────────────────────────────────────────────

    @staticmethod
    def _to_result(
        policy: TierPolicy, snapshot: WindowSnapshot, now: float
    ) -> RateLimitResult:
        oldest = snapshot.oldest if snapshot.oldest is not None else now
        return RateLimitResult(
            success=snapshot.admitted,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - snapshot.count),
            reset_at=oldest + policy.window_seconds,
        )

    async def _emit(self, event: SecurityEvent) -> None:
        if self._events is not None:
            await self._events.emit(event)


__all__: list[str] = ["AbuseGuard", "DEGRADED_RESET_SECONDS"]
