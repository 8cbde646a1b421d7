"""MFA ports (protocols) and records shared with the identity store.

The identity store itself is external. These narrow interfaces are all the
orchestrator needs from it: factor state, backup-code records, password
re-proof and session assurance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from .backup_codes import BackupCodeRecord


class FactorState(str, Enum):
    """Lifecycle of an owner's TOTP factor."""

    NEEDS_SETUP = "needs_setup"
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    DISABLED = "disabled"


class AssuranceLevel(str, Enum):
    """Coarse authentication strength of a session."""

    BASELINE = "baseline"
    ELEVATED = "elevated"


@dataclass(frozen=True)
class MfaFactor:
    """Persisted TOTP factor.

    Attributes:
        owner_id: Identity-store subject the factor belongs to.
        secret: Base32 TOTP secret. Immutable once verified.
        factor_type: Always ``"totp"``.
        is_active: Flips true only on first successful verification.
        verified_at: When the factor was activated.
        disabled_at: When the factor was deactivated.
    """

    owner_id: str
    secret: str
    factor_type: str = "totp"
    is_active: bool = False
    verified_at: datetime | None = None
    disabled_at: datetime | None = None

    @property
    def state(self) -> FactorState:
        if self.is_active:
            return FactorState.ACTIVE
        if self.disabled_at is not None:
            return FactorState.DISABLED
        return FactorState.PENDING_VERIFICATION


def factor_state(factor: MfaFactor | None) -> FactorState:
    """State of an optional factor; no factor means setup is needed."""
    if factor is None:
        return FactorState.NEEDS_SETUP
    return factor.state


@runtime_checkable
class IMfaStore(Protocol):
    """Protocol for factor and backup-code persistence.

    Implementations MUST make each method atomic. In a relational store
    each method maps to one transaction; ``consume_code`` maps to
    ``UPDATE ... SET used_at = :now WHERE id = :id AND used_at IS NULL``.
    """

    async def get_factor(self, owner_id: str) -> MfaFactor | None:
        """Get the owner's TOTP factor, active or not."""
        ...

    async def save_pending(
        self, factor: MfaFactor, records: list[BackupCodeRecord]
    ) -> None:
        """Store an inactive factor together with a fresh code batch.

        Replaces any pending or disabled factor and any prior batch. Both
        writes succeed or neither does.

        Raises:
            MfaAlreadyActiveError: If the owner's factor is active.
            PersistenceError: If the write fails (nothing is changed).
        """
        ...

    async def activate(self, owner_id: str, verified_at: datetime) -> bool:
        """Flip a pending factor to active.

        Returns:
            True if this call performed the transition, False if the factor
            was not pending (already active, disabled or missing).
        """
        ...

    async def deactivate(self, owner_id: str, disabled_at: datetime) -> None:
        """Deactivate the factor and purge its backup codes in one write."""
        ...

    async def list_codes(self, owner_id: str) -> list[BackupCodeRecord]:
        """List the owner's current batch, used codes included."""
        ...

    async def consume_code(
        self, owner_id: str, code_id: str, used_at: datetime
    ) -> bool:
        """Mark a code used if and only if it is still unused.

        Returns:
            True for exactly one of any number of concurrent callers.
        """
        ...

    async def replace_codes(
        self, owner_id: str, records: list[BackupCodeRecord]
    ) -> None:
        """Swap the owner's batch for ``records``, all or nothing.

        Raises:
            PersistenceError: If the write fails (old batch stays active).
        """
        ...


@runtime_checkable
class IPasswordVerifier(Protocol):
    """Re-proof of the account password, backed by the identity store."""

    async def verify_password(self, owner_id: str, password: str) -> bool:
        ...


@runtime_checkable
class ISessionAssurance(Protocol):
    """Downstream session state that tracks assurance level."""

    async def drop_to_baseline(self, owner_id: str) -> None:
        """Downgrade every session of ``owner_id`` to baseline assurance."""
        ...


__all__: list[str] = [
    "FactorState",
    "AssuranceLevel",
    "MfaFactor",
    "factor_state",
    "IMfaStore",
    "IPasswordVerifier",
    "ISessionAssurance",
]
