"""MFA orchestrator: setup, verification, disable and backup-code renewal.

Factor lifecycle::

    NEEDS_SETUP → PENDING_VERIFICATION → ACTIVE → DISABLED
                         ↑                           │
                         └───────── setup ───────────┘

Every entry point is rate-limited (``AUTH_OPERATIONS`` keyed by caller IP)
before any cryptographic work, padded to a minimum response time, and run
through the instrumentation hooks as ``authguard.mfa.<operation>``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import TypeVar

from ..audit.events import SecurityEvent, SecurityEventSeverity, SecurityEventType
from ..correlation import correlation_scope
from ..exceptions import (
    BackupCodeExhaustedError,
    CryptoError,
    InvalidPasswordError,
    MfaAlreadyActiveError,
    MfaInvalidError,
    MfaNotConfiguredError,
    ValidationError,
)
from ..instrumentation import get_hook_registry
from ..ratelimit.tiers import RateLimitTier
from ..timing import MinimumDuration
from . import totp
from .backup_codes import BackupCodeVault
from .ports import AssuranceLevel, FactorState, MfaFactor, factor_state

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..audit.sinks import SecurityEventEmitter
    from ..instrumentation import HookRegistry
    from ..ratelimit.service import AbuseGuard
    from .backup_codes import BackupCodeRecord
    from .ports import IMfaStore, IPasswordVerifier, ISessionAssurance

logger = logging.getLogger("cqrs_ddd.authguard.mfa")

UNKNOWN_IP = "unknown"

T = TypeVar("T")
TModel = TypeVar("TModel", bound=BaseModel)


# ═══════════════════════════════════════════════════════════════
# CONFIGURATION AND REQUESTS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OrchestratorConfig:
    """MFA orchestrator configuration.

    Attributes:
        issuer: Issuer shown in authenticator apps.
        min_response_seconds: Floor applied to every entry point.
        require_code_to_disable: Demand a TOTP code on top of the password.
        backup_code_count: Codes per generated batch.
    """

    issuer: str = "cqrs-ddd"
    min_response_seconds: float = 0.15
    require_code_to_disable: bool = False
    backup_code_count: int = 10


class VerificationMethod(str, Enum):
    TOTP = "totp"
    BACKUP = "backup"


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    owner_id: str = Field(min_length=1)


class SetupRequest(_Request):
    label: str = Field(min_length=1, max_length=256)


class VerifyRequest(_Request):
    code: str = Field(min_length=1, max_length=64)
    method: VerificationMethod = VerificationMethod.TOTP


class DisableRequest(_Request):
    password: str = Field(min_length=1)
    code: str | None = Field(default=None, max_length=64)


# ═══════════════════════════════════════════════════════════════
# RESPONSES
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class MfaSetupResponse:
    """Returned exactly once; the secret and codes are never retrievable again."""

    secret: str
    provisioning_uri: str
    backup_codes: list[str]
    manual_entry_key: str


@dataclass(frozen=True)
class MfaVerifyResponse:
    success: bool
    assurance_level: AssuranceLevel
    should_regenerate_backup_codes: bool = False
    method: VerificationMethod = VerificationMethod.TOTP
    activated: bool = False


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    state: FactorState
    verified_at: datetime | None
    total_backup_codes: int
    remaining_backup_codes: int
    should_regenerate_backup_codes: bool

    @property
    def needs_setup(self) -> bool:
        return self.state in (FactorState.NEEDS_SETUP, FactorState.DISABLED)

    @property
    def has_backup_codes(self) -> bool:
        return self.remaining_backup_codes > 0


@dataclass(frozen=True)
class BackupCodesResponse:
    backup_codes: list[str]

    @property
    def count(self) -> int:
        return len(self.backup_codes)


def _failed(method: VerificationMethod) -> MfaVerifyResponse:
    return MfaVerifyResponse(
        success=False, assurance_level=AssuranceLevel.BASELINE, method=method
    )


# ═══════════════════════════════════════════════════════════════
# ORCHESTRATOR
# ═══════════════════════════════════════════════════════════════


class MfaOrchestrator:
    """Per-request MFA workflows over the code generator, vault and guard.

    Only this class turns internal outcomes into responses and errors:

    - wrong code, or a backup code consumed by a racing request:
      ``MfaVerifyResponse(success=False)``
    - missing or inactive factor: ``MfaNotConfiguredError``
    - no unused backup codes: ``BackupCodeExhaustedError``
    - rate limited: ``RateLimitExceededError``
    - corrupt secret or KDF failure: ``CryptoError`` (logged, opaque)

    Example:
        ```python
        orchestrator = MfaOrchestrator(
            store=store,
            vault=BackupCodeVault(),
            guard=guard,
            passwords=password_verifier,
            sessions=session_assurance,
            events=emitter,
            config=OrchestratorConfig(issuer="Acme"),
        )
        setup = await orchestrator.setup("user-1", "ada@example.com", caller_ip=ip)
        result = await orchestrator.verify_setup("user-1", code, caller_ip=ip)
        ```
    """

    def __init__(
        self,
        *,
        store: IMfaStore,
        guard: AbuseGuard,
        passwords: IPasswordVerifier,
        sessions: ISessionAssurance,
        vault: BackupCodeVault | None = None,
        events: SecurityEventEmitter | None = None,
        config: OrchestratorConfig | None = None,
        totp_config: totp.TotpConfig | None = None,
        hook_registry: HookRegistry | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._guard = guard
        self._passwords = passwords
        self._sessions = sessions
        self._vault = vault or BackupCodeVault()
        self._events = events
        self.config = config or OrchestratorConfig()
        self.totp_config = totp_config or totp.TotpConfig()
        self._hooks = hook_registry
        self._clock = clock
        self._sleep = sleep

    # ── Entry points ─────────────────────────────────────────────

    async def setup(
        self, owner_id: str, label: str, *, caller_ip: str = UNKNOWN_IP
    ) -> MfaSetupResponse:
        """Start enrolment: new secret, provisioning URI and backup codes.

        Raises:
            MfaAlreadyActiveError: If the owner already has an active factor.
            PersistenceError: If the factor and codes could not be stored
                (nothing is left behind).
        """
        return await self._run(
            "setup",
            owner_id,
            caller_ip,
            lambda: self._setup(owner_id, label, caller_ip),
        )

    async def verify_setup(
        self, owner_id: str, code: str, *, caller_ip: str = UNKNOWN_IP
    ) -> MfaVerifyResponse:
        """First verification: activates a pending factor on a valid TOTP code.

        Raises:
            MfaAlreadyActiveError: If the factor is already active.
            MfaNotConfiguredError: If there is no pending factor.
        """
        return await self._run(
            "verify_setup",
            owner_id,
            caller_ip,
            lambda: self._verify_setup(owner_id, code, caller_ip),
        )

    async def verify(
        self,
        owner_id: str,
        code: str,
        method: VerificationMethod | str = VerificationMethod.TOTP,
        *,
        caller_ip: str = UNKNOWN_IP,
    ) -> MfaVerifyResponse:
        """Login-time verification with a TOTP or backup code.

        A valid TOTP code against a pending factor also activates it.
        """
        return await self._run(
            "verify",
            owner_id,
            caller_ip,
            lambda: self._verify(owner_id, code, method, caller_ip),
        )

    async def disable(
        self,
        owner_id: str,
        password: str,
        code: str | None = None,
        *,
        caller_ip: str = UNKNOWN_IP,
    ) -> None:
        """Deactivate the factor after password re-proof.

        Purges the backup codes and drops the owner's sessions to baseline
        assurance.

        Raises:
            MfaNotConfiguredError: If no active factor exists.
            InvalidPasswordError: If the password does not verify.
            MfaInvalidError: If a supplied (or required) code does not verify.
        """
        await self._run(
            "disable",
            owner_id,
            caller_ip,
            lambda: self._disable(owner_id, password, code, caller_ip),
        )

    async def regenerate_backup_codes(
        self, owner_id: str, *, caller_ip: str = UNKNOWN_IP
    ) -> BackupCodesResponse:
        """Replace the whole batch for an active, verified factor.

        Also counts against the owner's ``DATA_EXPORT`` budget.
        """
        return await self._run(
            "regenerate_backup_codes",
            owner_id,
            caller_ip,
            lambda: self._regenerate(owner_id, caller_ip),
        )

    async def status(self, owner_id: str, *, caller_ip: str = UNKNOWN_IP) -> MfaStatus:
        return await self._run(
            "status", owner_id, caller_ip, lambda: self._status(owner_id)
        )

    # ── Workflows ────────────────────────────────────────────────

    async def _setup(
        self, owner_id: str, label: str, caller_ip: str
    ) -> MfaSetupResponse:
        request = self._parse(SetupRequest, owner_id=owner_id, label=label)

        existing = await self._store.get_factor(request.owner_id)
        if factor_state(existing) is FactorState.ACTIVE:
            raise MfaAlreadyActiveError("TOTP is already enabled for this account")

        secret = totp.generate_secret(self.totp_config.secret_bytes)
        uri = totp.build_provisioning_uri(secret, self.config.issuer, request.label)
        batch = await asyncio.to_thread(
            self._vault.generate, self.config.backup_code_count
        )
        await self._store.save_pending(
            MfaFactor(owner_id=request.owner_id, secret=secret), batch.records
        )

        logger.info("MFA setup initiated for %s", request.owner_id)
        await self._emit(
            SecurityEventType.MFA_SETUP_INITIATED,
            caller_ip,
            request.owner_id,
            {"backup_codes": len(batch.records)},
        )
        return MfaSetupResponse(
            secret=secret,
            provisioning_uri=uri,
            backup_codes=self._vault.format_for_display(batch.plain_codes),
            manual_entry_key=totp.format_secret_for_manual_entry(secret),
        )

    async def _verify_setup(
        self, owner_id: str, code: str, caller_ip: str
    ) -> MfaVerifyResponse:
        request = self._parse(VerifyRequest, owner_id=owner_id, code=code)
        self._check_code_format(request.code, request.method)
        factor = await self._store.get_factor(request.owner_id)
        state = factor_state(factor)
        if state is FactorState.ACTIVE:
            raise MfaAlreadyActiveError("TOTP is already enabled for this account")
        if factor is None or state is not FactorState.PENDING_VERIFICATION:
            raise MfaNotConfiguredError("No pending TOTP setup for this account")
        return await self._verify_totp(factor, request.code, caller_ip)

    async def _verify(
        self,
        owner_id: str,
        code: str,
        method: VerificationMethod | str,
        caller_ip: str,
    ) -> MfaVerifyResponse:
        request = self._parse(
            VerifyRequest, owner_id=owner_id, code=code, method=method
        )
        self._check_code_format(request.code, request.method)
        factor = await self._store.get_factor(request.owner_id)
        state = factor_state(factor)

        if request.method is VerificationMethod.TOTP:
            if factor is None or state is FactorState.DISABLED:
                await self._emit_failure(request, caller_ip, "no_factor")
                raise MfaNotConfiguredError("TOTP not configured for this account")
            return await self._verify_totp(factor, request.code, caller_ip)

        if state is not FactorState.ACTIVE:
            await self._emit_failure(request, caller_ip, "no_factor")
            raise MfaNotConfiguredError("TOTP not configured for this account")
        return await self._verify_backup(request, caller_ip)

    async def _verify_totp(
        self, factor: MfaFactor, code: str, caller_ip: str
    ) -> MfaVerifyResponse:
        cfg = self.totp_config
        now = self._clock()
        valid = totp.verify_code(
            code,
            factor.secret,
            cfg.window,
            cfg.step,
            digits=cfg.digits,
            algorithm=cfg.algorithm,
            now=now,
        )
        if not valid:
            logger.warning("TOTP verification failed for %s", factor.owner_id)
            await self._emit(
                SecurityEventType.MFA_FAILED,
                caller_ip,
                factor.owner_id,
                {"method": VerificationMethod.TOTP.value, "reason": "invalid_code"},
                SecurityEventSeverity.WARNING,
            )
            return _failed(VerificationMethod.TOTP)

        activated = False
        if factor.state is FactorState.PENDING_VERIFICATION:
            activated = await self._store.activate(factor.owner_id, self._now(now))
            if activated:
                logger.info("MFA factor activated for %s", factor.owner_id)
                await self._emit(
                    SecurityEventType.MFA_ENABLED, caller_ip, factor.owner_id, {}
                )

        await self._emit(
            SecurityEventType.MFA_VERIFIED,
            caller_ip,
            factor.owner_id,
            {"method": VerificationMethod.TOTP.value},
        )
        return MfaVerifyResponse(
            success=True,
            assurance_level=AssuranceLevel.ELEVATED,
            method=VerificationMethod.TOTP,
            activated=activated,
        )

    async def _verify_backup(
        self, request: VerifyRequest, caller_ip: str
    ) -> MfaVerifyResponse:
        owner_id = request.owner_id
        unused = [r for r in await self._store.list_codes(owner_id) if not r.is_used]
        if not unused:
            await self._emit_failure(request, caller_ip, "no_backup_codes")
            raise BackupCodeExhaustedError("No backup codes available")

        match = await asyncio.to_thread(self._vault.find_match, request.code, unused)
        # A lost race is reported exactly like a wrong code.
        if match is None or not await self._store.consume_code(
            owner_id, match.id, self._now()
        ):
            logger.warning("Backup code verification failed for %s", owner_id)
            await self._emit_failure(request, caller_ip, "invalid_code")
            return _failed(VerificationMethod.BACKUP)

        records = await self._store.list_codes(owner_id)
        should_regenerate = self._vault.should_regenerate(records)
        remaining = sum(1 for r in records if not r.is_used)
        await self._emit(
            SecurityEventType.BACKUP_CODE_USED,
            caller_ip,
            owner_id,
            {"remaining": remaining},
            SecurityEventSeverity.WARNING if should_regenerate else None,
        )
        await self._emit(
            SecurityEventType.MFA_VERIFIED,
            caller_ip,
            owner_id,
            {"method": VerificationMethod.BACKUP.value},
        )
        return MfaVerifyResponse(
            success=True,
            assurance_level=AssuranceLevel.ELEVATED,
            should_regenerate_backup_codes=should_regenerate,
            method=VerificationMethod.BACKUP,
        )

    async def _disable(
        self, owner_id: str, password: str, code: str | None, caller_ip: str
    ) -> None:
        request = self._parse(
            DisableRequest, owner_id=owner_id, password=password, code=code
        )
        if self.config.require_code_to_disable and not request.code:
            raise ValidationError({"code": ["A verification code is required"]})
        if request.code:
            self._check_code_format(request.code, VerificationMethod.TOTP)

        factor = await self._store.get_factor(request.owner_id)
        if factor is None or not factor.is_active:
            raise MfaNotConfiguredError("TOTP is not enabled for this account")

        verified = await self._passwords.verify_password(
            request.owner_id, request.password
        )
        if not verified:
            await self._emit(
                SecurityEventType.MFA_FAILED,
                caller_ip,
                request.owner_id,
                {"action": "disable", "reason": "invalid_password"},
                SecurityEventSeverity.WARNING,
            )
            raise InvalidPasswordError("Invalid password")

        if request.code:
            cfg = self.totp_config
            if not totp.verify_code(
                request.code,
                factor.secret,
                cfg.window,
                cfg.step,
                digits=cfg.digits,
                algorithm=cfg.algorithm,
                now=self._clock(),
            ):
                await self._emit(
                    SecurityEventType.MFA_FAILED,
                    caller_ip,
                    request.owner_id,
                    {"action": "disable", "reason": "invalid_code"},
                    SecurityEventSeverity.WARNING,
                )
                raise MfaInvalidError("Invalid verification code")

        await self._store.deactivate(request.owner_id, self._now())
        await self._sessions.drop_to_baseline(request.owner_id)
        logger.info("MFA disabled for %s", request.owner_id)
        await self._emit(
            SecurityEventType.MFA_DISABLED,
            caller_ip,
            request.owner_id,
            {},
            SecurityEventSeverity.WARNING,
        )

    async def _regenerate(self, owner_id: str, caller_ip: str) -> BackupCodesResponse:
        request = self._parse(_Request, owner_id=owner_id)
        await self._guard.enforce(RateLimitTier.DATA_EXPORT, request.owner_id)

        factor = await self._store.get_factor(request.owner_id)
        if factor is None or not factor.is_active or factor.verified_at is None:
            raise MfaNotConfiguredError(
                "TOTP must be enabled before regenerating backup codes"
            )

        batch = await asyncio.to_thread(
            self._vault.generate, self.config.backup_code_count
        )
        await self._store.replace_codes(request.owner_id, batch.records)

        logger.info("Backup codes regenerated for %s", request.owner_id)
        await self._emit(
            SecurityEventType.BACKUP_CODES_REGENERATED,
            caller_ip,
            request.owner_id,
            {"count": len(batch.records)},
        )
        return BackupCodesResponse(
            backup_codes=self._vault.format_for_display(batch.plain_codes)
        )

    async def _status(self, owner_id: str) -> MfaStatus:
        request = self._parse(_Request, owner_id=owner_id)
        factor = await self._store.get_factor(request.owner_id)
        state = factor_state(factor)
        records: list[BackupCodeRecord] = []
        if state is FactorState.ACTIVE:
            records = await self._store.list_codes(request.owner_id)
        stats = self._vault.usage_stats(records)
        return MfaStatus(
            enabled=state is FactorState.ACTIVE,
            state=state,
            verified_at=factor.verified_at if factor is not None else None,
            total_backup_codes=stats.total,
            remaining_backup_codes=stats.remaining,
            should_regenerate_backup_codes=(
                state is FactorState.ACTIVE and self._vault.should_regenerate(records)
            ),
        )

    # ── Plumbing ─────────────────────────────────────────────────

    async def _run(
        self,
        operation: str,
        owner_id: str,
        caller_ip: str,
        handler: Callable[[], Awaitable[T]],
    ) -> T:
        registry = self._hooks or get_hook_registry()

        async def gated() -> T:
            await self._guard.enforce(RateLimitTier.AUTH_OPERATIONS, caller_ip)
            return await handler()

        with correlation_scope():
            async with MinimumDuration(
                self.config.min_response_seconds, sleep=self._sleep
            ):
                try:
                    return await registry.execute_all(  # type: ignore[no-any-return]
                        f"authguard.mfa.{operation}",
                        {"operation": operation},
                        gated,
                    )
                except CryptoError as exc:
                    logger.error(
                        "Cryptographic fault during %s for %s",
                        operation,
                        owner_id,
                        exc_info=True,
                    )
                    await self._emit(
                        SecurityEventType.INTERNAL_ERROR,
                        caller_ip,
                        owner_id,
                        {"operation": operation, "error": type(exc).__name__},
                        SecurityEventSeverity.CRITICAL,
                    )
                    raise

    @staticmethod
    def _parse(model: type[TModel], **data: Any) -> TModel:
        try:
            return model(**data)
        except pydantic.ValidationError as exc:
            errors: dict[str, list[str]] = {}
            for error in exc.errors():
                field = ".".join(str(part) for part in error["loc"]) or "__root__"
                errors.setdefault(field, []).append(error["msg"])
            raise ValidationError(errors) from exc

    def _check_code_format(self, code: str, method: VerificationMethod) -> None:
        """Reject malformed codes before any store read or derivation."""
        if method is VerificationMethod.BACKUP:
            if not self._vault.is_valid_format(code):
                raise ValidationError({"code": ["Invalid backup code format"]})
        elif not totp.is_well_formed(code, self.totp_config.digits):
            raise ValidationError(
                {"code": [f"Code must be {self.totp_config.digits} digits"]}
            )

    def _now(self, timestamp: float | None = None) -> datetime:
        current = self._clock() if timestamp is None else timestamp
        return datetime.fromtimestamp(current, tz=timezone.utc)

    async def _emit_failure(
        self, request: VerifyRequest, caller_ip: str, reason: str
    ) -> None:
        await self._emit(
            SecurityEventType.MFA_FAILED,
            caller_ip,
            request.owner_id,
            {"method": request.method.value, "reason": reason},
            SecurityEventSeverity.WARNING,
        )

    async def _emit(
        self,
        event_type: SecurityEventType,
        caller_ip: str,
        subject_id: str,
        details: dict[str, Any],
        severity: SecurityEventSeverity | None = None,
    ) -> None:
        if self._events is None:
            return
        await self._events.emit(
            SecurityEvent(
                event_type=event_type,
                severity=severity or SecurityEventSeverity.INFO,
                caller_ip=caller_ip,
                subject_id=subject_id,
                details=details,
                timestamp=self._now(),
            )
        )


__all__: list[str] = [
    "OrchestratorConfig",
    "VerificationMethod",
    "SetupRequest",
    "VerifyRequest",
    "DisableRequest",
    "MfaSetupResponse",
    "MfaVerifyResponse",
    "MfaStatus",
    "BackupCodesResponse",
    "MfaOrchestrator",
]
