"""cqrs-ddd-authguard: authentication hardening for cqrs-ddd services.

TOTP multi-factor authentication, single-use backup codes and a tiered,
fail-open abuse guard.
"""

from __future__ import annotations

from .audit import (
    InMemorySecurityEventSink,
    ISecurityEventSink,
    LoggingSecurityEventSink,
    SecurityEvent,
    SecurityEventEmitter,
    SecurityEventSeverity,
    SecurityEventType,
)
from .correlation import (
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from .dispatch import Admission, DispatchPolicy, Operation, OperationDescriptor
from .exceptions import (
    AuthGuardError,
    BackupCodeExhaustedError,
    CounterStoreError,
    CryptoError,
    DomainError,
    InfrastructureError,
    InvalidPasswordError,
    KdfError,
    MfaAlreadyActiveError,
    MfaError,
    MfaInvalidError,
    MfaNotConfiguredError,
    PersistenceError,
    RateLimitExceededError,
    SecretDecodeError,
    UnroutableOperationError,
    ValidationError,
)
from .instrumentation import HookRegistry, get_hook_registry, set_hook_registry
from .mfa import (
    AssuranceLevel,
    BackupCodeVault,
    MfaOrchestrator,
    OrchestratorConfig,
    TotpConfig,
    VaultConfig,
)
from .ratelimit import (
    AbuseGuard,
    InMemorySlidingWindowStore,
    RateLimitResult,
    RateLimitTier,
    RedisSlidingWindowStore,
    TierPolicy,
)
from .timing import MinimumDuration

__version__ = "0.1.0"

__all__: list[str] = [
    # Abuse guard
    "AbuseGuard",
    "RateLimitTier",
    "TierPolicy",
    "RateLimitResult",
    "InMemorySlidingWindowStore",
    "RedisSlidingWindowStore",
    # Dispatch
    "DispatchPolicy",
    "Operation",
    "OperationDescriptor",
    "Admission",
    # MFA
    "MfaOrchestrator",
    "OrchestratorConfig",
    "TotpConfig",
    "VaultConfig",
    "BackupCodeVault",
    "AssuranceLevel",
    # Audit
    "SecurityEvent",
    "SecurityEventType",
    "SecurityEventSeverity",
    "ISecurityEventSink",
    "InMemorySecurityEventSink",
    "LoggingSecurityEventSink",
    "SecurityEventEmitter",
    # Shared
    "MinimumDuration",
    "HookRegistry",
    "get_hook_registry",
    "set_hook_registry",
    "get_correlation_id",
    "set_correlation_id",
    "generate_correlation_id",
    "correlation_scope",
    # Exceptions
    "AuthGuardError",
    "ValidationError",
    "DomainError",
    "MfaError",
    "MfaNotConfiguredError",
    "MfaAlreadyActiveError",
    "MfaInvalidError",
    "BackupCodeExhaustedError",
    "InvalidPasswordError",
    "RateLimitExceededError",
    "UnroutableOperationError",
    "InfrastructureError",
    "CounterStoreError",
    "PersistenceError",
    "CryptoError",
    "SecretDecodeError",
    "KdfError",
]
