"""In-memory MFA adapters for TESTING ONLY.

⚠️ WARNING: Secrets are stored in plain text in memory.
Do NOT use in production!
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import TYPE_CHECKING

from ..exceptions import MfaAlreadyActiveError
from .ports import IMfaStore, IPasswordVerifier, ISessionAssurance, MfaFactor

if TYPE_CHECKING:
    from datetime import datetime

    from .backup_codes import BackupCodeRecord


class InMemoryMfaStore(IMfaStore):
    """Dict-backed factor and backup-code store.

    A single lock serialises writes so the compare-and-set semantics of
    ``activate`` and ``consume_code`` hold under concurrent tasks.
    """

    def __init__(self) -> None:
        self._factors: dict[str, MfaFactor] = {}
        self._codes: dict[str, list[BackupCodeRecord]] = {}
        self._lock = asyncio.Lock()

    async def get_factor(self, owner_id: str) -> MfaFactor | None:
        return self._factors.get(owner_id)

    async def save_pending(
        self, factor: MfaFactor, records: list[BackupCodeRecord]
    ) -> None:
        async with self._lock:
            existing = self._factors.get(factor.owner_id)
            if existing is not None and existing.is_active:
                raise MfaAlreadyActiveError("TOTP is already enabled for this account")
            bound = [dataclasses.replace(r, owner_id=factor.owner_id) for r in records]
            self._factors[factor.owner_id] = factor
            self._codes[factor.owner_id] = bound

    async def activate(self, owner_id: str, verified_at: datetime) -> bool:
        async with self._lock:
            factor = self._factors.get(owner_id)
            if factor is None or factor.is_active or factor.disabled_at is not None:
                return False
            self._factors[owner_id] = dataclasses.replace(
                factor, is_active=True, verified_at=verified_at
            )
            return True

    async def deactivate(self, owner_id: str, disabled_at: datetime) -> None:
        async with self._lock:
            factor = self._factors.get(owner_id)
            if factor is not None:
                self._factors[owner_id] = dataclasses.replace(
                    factor, is_active=False, disabled_at=disabled_at
                )
            self._codes.pop(owner_id, None)

    async def list_codes(self, owner_id: str) -> list[BackupCodeRecord]:
        return list(self._codes.get(owner_id, []))

    async def consume_code(
        self, owner_id: str, code_id: str, used_at: datetime
    ) -> bool:
        async with self._lock:
            codes = self._codes.get(owner_id, [])
            for index, record in enumerate(codes):
                if record.id != code_id:
                    continue
                if record.used_at is not None:
                    return False
                codes[index] = dataclasses.replace(record, used_at=used_at)
                return True
            return False

    async def replace_codes(
        self, owner_id: str, records: list[BackupCodeRecord]
    ) -> None:
        async with self._lock:
            self._codes[owner_id] = [
                dataclasses.replace(r, owner_id=owner_id) for r in records
            ]


class InMemoryPasswordVerifier(IPasswordVerifier):
    """Password verifier backed by a plain dict. Tests only."""

    def __init__(self, passwords: dict[str, str] | None = None) -> None:
        self._passwords = dict(passwords or {})

    def set_password(self, owner_id: str, password: str) -> None:
        self._passwords[owner_id] = password

    async def verify_password(self, owner_id: str, password: str) -> bool:
        return self._passwords.get(owner_id) == password


class InMemorySessionAssurance(ISessionAssurance):
    """Records downgrade calls for assertions."""

    def __init__(self) -> None:
        self.downgraded: list[str] = []

    async def drop_to_baseline(self, owner_id: str) -> None:
        self.downgraded.append(owner_id)


__all__: list[str] = [
    "InMemoryMfaStore",
    "InMemoryPasswordVerifier",
    "InMemorySessionAssurance",
]
