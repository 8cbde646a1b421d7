"""TOTP code generator (RFC 4226 HOTP / RFC 6238 TOTP).

Pure functions over a Base32 secret: secret generation, Base32 codec,
HOTP derivation and windowed TOTP verification. Works with any
TOTP-compatible authenticator app:
- Google Authenticator
- Microsoft Authenticator
- Authy
- 1Password

Uses pyotp internally for the HOTP derivation.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import secrets
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import pyotp

from ..exceptions import SecretDecodeError

_DIGESTS: dict[str, Any] = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}

DEFAULT_DIGITS = 6
DEFAULT_STEP = 30
DEFAULT_WINDOW = 1
DEFAULT_ALGORITHM = "SHA1"
SECRET_BYTES = 32


@dataclass(frozen=True)
class TotpConfig:
    """TOTP configuration.

    Attributes:
        digits: Number of digits in a code.
        step: Time step in seconds.
        window: Accepted drift in steps on either side of "now".
        algorithm: HMAC digest name (SHA1, SHA256, SHA512).
        secret_bytes: Random bytes behind each generated secret.
    """

    digits: int = DEFAULT_DIGITS
    step: int = DEFAULT_STEP
    window: int = DEFAULT_WINDOW
    algorithm: str = DEFAULT_ALGORITHM
    secret_bytes: int = SECRET_BYTES


# ═══════════════════════════════════════════════════════════════
# BASE32 CODEC
# ═══════════════════════════════════════════════════════════════


def encode_base32(data: bytes) -> str:
    """Encode bytes as unpadded upper-case Base32 (RFC 4648 alphabet)."""
    return base64.b32encode(data).decode("ascii").rstrip("=")


def decode_base32(encoded: str) -> bytes:
    """Decode a Base32 string, tolerating lower case and missing padding.

    Raises:
        SecretDecodeError: If the string is not valid Base32.
    """
    cleaned = "".join(encoded.split()).rstrip("=").upper()
    padding = (-len(cleaned)) % 8
    try:
        return base64.b32decode(cleaned + "=" * padding)
    except (binascii.Error, ValueError) as exc:
        raise SecretDecodeError("TOTP secret is not valid Base32") from exc


# ═══════════════════════════════════════════════════════════════
# SECRETS AND PROVISIONING
# ═══════════════════════════════════════════════════════════════


def generate_secret(num_bytes: int = SECRET_BYTES) -> str:
    """Generate a fresh Base32 secret backed by ``num_bytes`` random bytes."""
    if num_bytes < 20:
        raise ValueError("TOTP secrets need at least 160 bits of entropy")
    return encode_base32(secrets.token_bytes(num_bytes))


def build_provisioning_uri(secret: str, issuer: str, label: str) -> str:
    """Build an ``otpauth://totp/`` URI for QR code enrolment.

    Algorithm, digits and period are always SHA1/6/30 because several
    authenticator apps ignore other values.
    """
    enc_issuer = quote(issuer, safe="")
    enc_label = quote(label, safe="")
    return (
        f"otpauth://totp/{enc_issuer}:{enc_label}"
        f"?secret={secret}&issuer={enc_issuer}"
        "&algorithm=SHA1&digits=6&period=30"
    )


def format_secret_for_manual_entry(secret: str) -> str:
    """Format secret for manual entry as groups of 4 characters."""
    secret = secret.rstrip("=")
    return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))


# ═══════════════════════════════════════════════════════════════
# CODES
# ═══════════════════════════════════════════════════════════════


def _hotp(secret: str, digits: int, algorithm: str) -> pyotp.HOTP:
    try:
        digest = _DIGESTS[algorithm.upper()]
    except KeyError:
        raise ValueError(f"Unsupported TOTP algorithm: {algorithm}") from None
    # Validate up front so a corrupt secret is reported as a crypto fault.
    raw = decode_base32(secret)
    if not raw:
        raise SecretDecodeError("TOTP secret is empty")
    return pyotp.HOTP(encode_base32(raw), digits=digits, digest=digest)


def compute_code(
    secret: str,
    counter: int,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Compute the RFC 4226 HOTP value for ``counter``.

    HMAC over the 8-byte big-endian counter, dynamic truncation, modulo
    10^digits, zero-padded.

    Raises:
        SecretDecodeError: If ``secret`` is not valid Base32.
    """
    if counter < 0:
        raise ValueError("HOTP counter must be non-negative")
    return str(_hotp(secret, digits, algorithm).at(counter))


def time_counter(step: int = DEFAULT_STEP, now: float | None = None) -> int:
    """Return ``floor(now / step)``."""
    current = time.time() if now is None else now
    return int(current // step)


def current_code(
    secret: str,
    *,
    step: int = DEFAULT_STEP,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
    now: float | None = None,
) -> str:
    """Return the code an authenticator would show right now."""
    return compute_code(secret, time_counter(step, now), digits, algorithm)


def is_well_formed(code: str, digits: int = DEFAULT_DIGITS) -> bool:
    """Check that ``code`` is exactly ``digits`` ASCII digits."""
    if not isinstance(code, str):
        return False
    return re.fullmatch(rf"[0-9]{{{digits}}}", code) is not None


def verify_code(
    code: str,
    secret: str,
    window: int = DEFAULT_WINDOW,
    step: int = DEFAULT_STEP,
    *,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
    now: float | None = None,
) -> bool:
    """Verify a TOTP code with ±``window`` steps of clock drift.

    Malformed input is rejected before any HMAC is computed.

    Raises:
        SecretDecodeError: If ``secret`` is not valid Base32.
    """
    if not is_well_formed(code, digits):
        return False

    hotp = _hotp(secret, digits, algorithm)
    center = time_counter(step, now)
    matched = False
    for counter in range(center - window, center + window + 1):
        if counter < 0:
            continue
        if hmac.compare_digest(str(hotp.at(counter)), code):
            matched = True
    return matched


def seconds_until_next_code(step: int = DEFAULT_STEP, now: float | None = None) -> int:
    """Seconds remaining before the current code rolls over."""
    current = int(time.time() if now is None else now)
    return step - (current % step)


__all__: list[str] = [
    "TotpConfig",
    "encode_base32",
    "decode_base32",
    "generate_secret",
    "build_provisioning_uri",
    "format_secret_for_manual_entry",
    "compute_code",
    "time_counter",
    "current_code",
    "is_well_formed",
    "verify_code",
    "seconds_until_next_code",
]
