"""Test configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from cqrs_ddd_authguard.audit import InMemorySecurityEventSink, SecurityEventEmitter
from cqrs_ddd_authguard.instrumentation import HookRegistry
from cqrs_ddd_authguard.mfa import (
    BackupCodeVault,
    InMemoryMfaStore,
    InMemoryPasswordVerifier,
    InMemorySessionAssurance,
    KdfParameters,
    MfaOrchestrator,
    OrchestratorConfig,
    VaultConfig,
)
from cqrs_ddd_authguard.ratelimit import (
    AbuseGuard,
    InMemorySlidingWindowStore,
    RateLimitTier,
    TierPolicy,
)

# 30 * 56666667: the start of a TOTP step.
START_TIME = 1_700_000_010.0

# Minimum Argon2 cost so tests stay fast.
CHEAP_KDF = KdfParameters(time_cost=1, memory_cost=8, parallelism=1)


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for ``asyncio.sleep`` and records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def vault() -> BackupCodeVault:
    return BackupCodeVault(VaultConfig(kdf=CHEAP_KDF))


@pytest.fixture
def sink() -> InMemorySecurityEventSink:
    return InMemorySecurityEventSink()


@pytest.fixture
def emitter(sink: InMemorySecurityEventSink) -> SecurityEventEmitter:
    return SecurityEventEmitter([sink])


@pytest.fixture
def hooks() -> HookRegistry:
    return HookRegistry()


@pytest.fixture
def window_store() -> InMemorySlidingWindowStore:
    return InMemorySlidingWindowStore()


@pytest.fixture
def guard(
    window_store: InMemorySlidingWindowStore,
    emitter: SecurityEventEmitter,
    hooks: HookRegistry,
    clock: FakeClock,
) -> AbuseGuard:
    """Guard with the default tier policies."""
    return AbuseGuard(window_store, events=emitter, hook_registry=hooks, clock=clock)


@pytest.fixture
def mfa_store() -> InMemoryMfaStore:
    return InMemoryMfaStore()


@pytest.fixture
def passwords() -> InMemoryPasswordVerifier:
    return InMemoryPasswordVerifier({"user-1": "correct horse battery staple"})


@pytest.fixture
def sessions() -> InMemorySessionAssurance:
    return InMemorySessionAssurance()


@pytest.fixture
def make_orchestrator(
    window_store: InMemorySlidingWindowStore,
    mfa_store: InMemoryMfaStore,
    passwords: InMemoryPasswordVerifier,
    sessions: InMemorySessionAssurance,
    vault: BackupCodeVault,
    emitter: SecurityEventEmitter,
    hooks: HookRegistry,
    clock: FakeClock,
    sleep: SleepRecorder,
) -> Any:
    """Factory for orchestrators sharing the test doubles above.

    The auth tier is widened by default so multi-step scenarios are not
    throttled; pass ``policies`` to test throttling.
    """

    def factory(
        *,
        policies: dict[RateLimitTier, TierPolicy] | None = None,
        config: OrchestratorConfig | None = None,
        store: Any = None,
        guard: AbuseGuard | None = None,
    ) -> MfaOrchestrator:
        if guard is None:
            guard = AbuseGuard(
                window_store,
                policies=policies
                or {RateLimitTier.AUTH_OPERATIONS: TierPolicy(1000, 10)},
                events=emitter,
                hook_registry=hooks,
                clock=clock,
            )
        return MfaOrchestrator(
            store=store or mfa_store,
            guard=guard,
            passwords=passwords,
            sessions=sessions,
            vault=vault,
            events=emitter,
            config=config or OrchestratorConfig(issuer="Acme"),
            hook_registry=hooks,
            clock=clock,
            sleep=sleep,
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator: Any) -> MfaOrchestrator:
    return make_orchestrator()  # type: ignore[no-any-return]
