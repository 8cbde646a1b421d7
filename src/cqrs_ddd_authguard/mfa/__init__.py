"""MFA: TOTP code generator, backup code vault and orchestrator."""

from __future__ import annotations

from .backup_codes import (
    ALPHABET,
    BackupCodeBatch,
    BackupCodeRecord,
    BackupCodeStats,
    BackupCodeVault,
    KdfParameters,
    VaultConfig,
)
from .memory import InMemoryMfaStore, InMemoryPasswordVerifier, InMemorySessionAssurance
from .orchestrator import (
    BackupCodesResponse,
    MfaOrchestrator,
    MfaSetupResponse,
    MfaStatus,
    MfaVerifyResponse,
    OrchestratorConfig,
    VerificationMethod,
)
from .ports import (
    AssuranceLevel,
    FactorState,
    IMfaStore,
    IPasswordVerifier,
    ISessionAssurance,
    MfaFactor,
    factor_state,
)
from .totp import (
    TotpConfig,
    build_provisioning_uri,
    compute_code,
    current_code,
    decode_base32,
    encode_base32,
    format_secret_for_manual_entry,
    generate_secret,
    seconds_until_next_code,
    verify_code,
)

__all__: list[str] = [
    # Code generator
    "TotpConfig",
    "generate_secret",
    "build_provisioning_uri",
    "format_secret_for_manual_entry",
    "encode_base32",
    "decode_base32",
    "compute_code",
    "current_code",
    "verify_code",
    "seconds_until_next_code",
    # Backup code vault
    "ALPHABET",
    "KdfParameters",
    "VaultConfig",
    "BackupCodeRecord",
    "BackupCodeBatch",
    "BackupCodeStats",
    "BackupCodeVault",
    # Ports
    "FactorState",
    "AssuranceLevel",
    "MfaFactor",
    "factor_state",
    "IMfaStore",
    "IPasswordVerifier",
    "ISessionAssurance",
    # In-memory adapters
    "InMemoryMfaStore",
    "InMemoryPasswordVerifier",
    "InMemorySessionAssurance",
    # Orchestrator
    "OrchestratorConfig",
    "VerificationMethod",
    "MfaSetupResponse",
    "MfaVerifyResponse",
    "MfaStatus",
    "BackupCodesResponse",
    "MfaOrchestrator",
]
