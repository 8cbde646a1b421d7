"""Backup code vault for MFA recovery.

Generates single-use recovery codes and stores them as salted Argon2id
derivations. Plaintext codes leave the vault exactly once, at generation;
everything that persists is a ``BackupCodeRecord``.

The vault is synchronous and CPU-bound: each derivation costs
tens of milliseconds. Async callers should run it via ``asyncio.to_thread``.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw

from ..exceptions import KdfError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

logger = logging.getLogger("cqrs_ddd.authguard.backup_codes")

# 32 symbols (5 bits each): A-Z and 2-9 without 0, O, 1 and I.
# Codes are upper-case only, so lower-case l never appears.
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


@dataclass(frozen=True)
class KdfParameters:
    """Argon2id cost parameters for backup-code derivation.

    Defaults follow the OWASP interactive-login profile
    (19 MiB, 2 passes, 1 lane), which lands in the tens of milliseconds
    on commodity hardware.

    Attributes:
        time_cost: Number of passes over memory.
        memory_cost: Memory in KiB.
        parallelism: Number of lanes.
        hash_len: Derived key length in bytes.
        salt_len: Random salt length in bytes.
    """

    time_cost: int = 2
    memory_cost: int = 19456
    parallelism: int = 1
    hash_len: int = 64
    salt_len: int = 32


@dataclass(frozen=True)
class VaultConfig:
    """Backup code vault configuration.

    Attributes:
        code_length: Characters per code.
        batch_size: Codes per generated batch.
        regenerate_threshold: Regeneration is advised below this many unused codes.
        kdf: Key-derivation cost parameters.
    """

    code_length: int = 8
    batch_size: int = 10
    regenerate_threshold: int = 3
    kdf: KdfParameters = field(default_factory=KdfParameters)


@dataclass(frozen=True)
class BackupCodeRecord:
    """Persisted form of a backup code.

    Attributes:
        id: Record identifier.
        code_hash: Hex-encoded derived key.
        salt: Hex-encoded salt.
        owner_id: Owner the batch belongs to (bound by the orchestrator).
        used_at: Set exactly once when the code is consumed.
    """

    id: str
    code_hash: str
    salt: str
    owner_id: str | None = None
    used_at: datetime | None = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


@dataclass(frozen=True)
class BackupCodeBatch:
    """Result of a generation: plaintext codes plus their records, index-aligned."""

    plain_codes: list[str]
    records: list[BackupCodeRecord]


@dataclass(frozen=True)
class BackupCodeStats:
    total: int
    used: int
    remaining: int
    usage_percentage: int


class BackupCodeVault:
    """Generates, hashes and verifies backup codes.

    Example:
        ```python
        vault = BackupCodeVault()
        batch = vault.generate()
        show_once(vault.format_for_display(batch.plain_codes))
        await store.replace_batch(owner_id, batch.records)

        # Later, at login
        candidate = vault.clean(user_input)
        for record in await store.list_unused(owner_id):
            if vault.verify(candidate, record.code_hash, record.salt):
                ...
        ```
    """

    def __init__(self, config: VaultConfig | None = None) -> None:
        self.config = config or VaultConfig()
        self._format = re.compile(
            rf"[{re.escape(ALPHABET)}]{{{self.config.code_length}}}"
        )

    # ── Generation ───────────────────────────────────────────────

    def _generate_code(self) -> str:
        return "".join(
            secrets.choice(ALPHABET) for _ in range(self.config.code_length)
        )

    def _derive(self, code: str, salt: bytes) -> bytes:
        kdf = self.config.kdf
        try:
            return hash_secret_raw(
                secret=code.encode("utf-8"),
                salt=salt,
                time_cost=kdf.time_cost,
                memory_cost=kdf.memory_cost,
                parallelism=kdf.parallelism,
                hash_len=kdf.hash_len,
                type=Type.ID,
            )
        except HashingError as exc:
            logger.error("Backup code derivation failed: %s", exc)
            raise KdfError("Backup code derivation failed") from exc

    def hash_code(self, code: str) -> tuple[str, str]:
        """Derive ``(hash_hex, salt_hex)`` for a code with a fresh salt."""
        salt = secrets.token_bytes(self.config.kdf.salt_len)
        return self._derive(code, salt).hex(), salt.hex()

    def generate(self, count: int | None = None) -> BackupCodeBatch:
        """Generate a batch of backup codes.

        Args:
            count: Number of codes (defaults to ``config.batch_size``).

        Returns:
            Plaintext codes (show once, never store) and hashed records.
        """
        count = self.config.batch_size if count is None else count
        if count < 1:
            raise ValueError("Backup code batch must contain at least one code")

        plain_codes: list[str] = []
        records: list[BackupCodeRecord] = []
        for _ in range(count):
            code = self._generate_code()
            code_hash, salt = self.hash_code(code)
            plain_codes.append(code)
            records.append(
                BackupCodeRecord(id=uuid.uuid4().hex, code_hash=code_hash, salt=salt)
            )
        return BackupCodeBatch(plain_codes=plain_codes, records=records)

    # ── Verification ─────────────────────────────────────────────

    def verify(self, candidate: str, stored_hash: str, stored_salt: str) -> bool:
        """Re-derive ``candidate`` with the stored salt and compare in constant time.

        Raises:
            KdfError: If the stored salt is corrupt or derivation fails.
        """
        try:
            salt = bytes.fromhex(stored_salt)
            expected = bytes.fromhex(stored_hash)
        except ValueError as exc:
            raise KdfError("Stored backup code record is corrupt") from exc
        derived = self._derive(self.clean(candidate), salt)
        return hmac.compare_digest(derived, expected)

    def find_match(
        self, candidate: str, records: Iterable[BackupCodeRecord]
    ) -> BackupCodeRecord | None:
        """Return the first unused record ``candidate`` verifies against.

        An empty or exhausted set never matches.
        """
        cleaned = self.clean(candidate)
        if not self.is_valid_format(cleaned):
            return None
        for record in records:
            if record.is_used:
                continue
            if self.verify(cleaned, record.code_hash, record.salt):
                return record
        return None

    # ── Formatting ───────────────────────────────────────────────

    @staticmethod
    def clean(raw_input: str) -> str:
        """Strip separators and whitespace, upper-case."""
        return re.sub(r"[\s\-_.]", "", raw_input).upper()

    def is_valid_format(self, code: str) -> bool:
        """Check a code (after ``clean``) has the right length and alphabet."""
        return self._format.fullmatch(self.clean(code)) is not None

    @staticmethod
    def format_for_display(codes: Sequence[str]) -> list[str]:
        """Format codes as "ABCD-EFGH" for readability."""
        return [
            "-".join(code[i : i + 4] for i in range(0, len(code), 4)) for code in codes
        ]

    # ── Lifecycle ────────────────────────────────────────────────

    def should_regenerate(self, records: Sequence[BackupCodeRecord]) -> bool:
        """True when fewer than ``regenerate_threshold`` unused codes remain."""
        unused = sum(1 for record in records if not record.is_used)
        return unused < self.config.regenerate_threshold

    @staticmethod
    def usage_stats(records: Sequence[BackupCodeRecord]) -> BackupCodeStats:
        total = len(records)
        used = sum(1 for record in records if record.is_used)
        percentage = round(used / total * 100) if total else 0
        return BackupCodeStats(
            total=total,
            used=used,
            remaining=total - used,
            usage_percentage=percentage,
        )


__all__: list[str] = [
    "ALPHABET",
    "KdfParameters",
    "VaultConfig",
    "BackupCodeRecord",
    "BackupCodeBatch",
    "BackupCodeStats",
    "BackupCodeVault",
]
