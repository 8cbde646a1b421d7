"""Exception hierarchy for cqrs-ddd-authguard.

All errors inherit from AuthGuardError. Domain errors describe client-fault
outcomes (wrong code, missing factor); infrastructure and crypto errors are
internal faults that callers surface opaquely.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ratelimit.tiers import RateLimitResult, RateLimitTier


class AuthGuardError(Exception):
    """Root exception for the entire authguard package."""


# ═══════════════════════════════════════════════════════════════
# INPUT ERRORS
# ═══════════════════════════════════════════════════════════════


class ValidationError(AuthGuardError):
    """Raised when inbound data is malformed or incomplete.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


# ═══════════════════════════════════════════════════════════════
# DOMAIN ERRORS
# ═══════════════════════════════════════════════════════════════


class DomainError(AuthGuardError):
    """Base class for all domain-related errors."""


class MfaError(DomainError):
    """Base class for MFA-related errors."""


class MfaNotConfiguredError(MfaError):
    """Raised when the owner has no factor in the state the operation needs."""


class MfaAlreadyActiveError(MfaError):
    """Raised when setup is requested for an owner with an active factor."""


class MfaInvalidError(MfaError):
    """Raised when the TOTP code supplied to confirm a disable does not verify.

    Verification itself reports wrong codes (and lost backup-code races)
    as an unsuccessful response rather than raising.
    """


class BackupCodeExhaustedError(MfaError):
    """Raised when every backup code in the batch has been used."""


class InvalidPasswordError(MfaError):
    """Raised when password re-proof fails during disable."""


class RateLimitExceededError(DomainError):
    """Raised when the abuse guard rejects a request.

    Attributes:
        tier: The tier whose budget was exhausted.
        result: The rejecting decision (limit, remaining, reset_at).
        retry_after: Whole seconds until a retry may be admitted.
    """

    def __init__(
        self,
        tier: RateLimitTier,
        result: RateLimitResult,
        message: str = "Too many requests. Please try again later.",
        retry_after: int = 0,
    ) -> None:
        super().__init__(message)
        self.tier = tier
        self.result = result
        self.message = message
        self.retry_after = retry_after


class UnroutableOperationError(DomainError):
    """Raised when an operation id has no entry in the dispatch table."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        super().__init__(f"No dispatch route for operation {operation_id!r}")


# ═══════════════════════════════════════════════════════════════
# INFRASTRUCTURE ERRORS
# ═══════════════════════════════════════════════════════════════


class InfrastructureError(AuthGuardError):
    """Base class for all infrastructure-related errors."""


class CounterStoreError(InfrastructureError):
    """Raised when the rate-limit counter store fails or times out.

    The abuse guard catches this and fails open; it never reaches callers.
    """


class PersistenceError(InfrastructureError):
    """Raised when the identity store rejects a write."""


# ═══════════════════════════════════════════════════════════════
# CRYPTO ERRORS
# ═══════════════════════════════════════════════════════════════


class CryptoError(AuthGuardError):
    """Base class for fatal cryptographic faults.

    These indicate corrupt configuration or stored data, not bad user input.
    """


class SecretDecodeError(CryptoError):
    """Raised when a stored TOTP secret is not valid Base32."""


class KdfError(CryptoError):
    """Raised when the backup-code key derivation fails."""


__all__: list[str] = [
    # Base
    "AuthGuardError",
    "ValidationError",
    # Domain
    "DomainError",
    "MfaError",
    "MfaNotConfiguredError",
    "MfaAlreadyActiveError",
    "MfaInvalidError",
    "BackupCodeExhaustedError",
    "InvalidPasswordError",
    "RateLimitExceededError",
    "UnroutableOperationError",
    # Infrastructure
    "InfrastructureError",
    "CounterStoreError",
    "PersistenceError",
    # Crypto
    "CryptoError",
    "SecretDecodeError",
    "KdfError",
]
