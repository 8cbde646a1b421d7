"""Rate-limit identifiers taken from already-extracted request data."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from joserfc.errors import JoseError
from joserfc.jws import extract_compact

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger("cqrs_ddd.authguard.dispatch")

UNKNOWN_IP = "unknown"
DEFAULT_TRUSTED_IP_HEADER = "cf-connecting-ip"


def extract_client_ip(
    headers: Mapping[str, str],
    trusted_header: str | None = DEFAULT_TRUSTED_IP_HEADER,
) -> str:
    """Pick the caller IP from request headers.

    Order: the trusted edge header, ``x-real-ip``, then the first entry of
    ``x-forwarded-for``. Header names are matched case-insensitively.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    candidates = [trusted_header.lower()] if trusted_header else []
    candidates += ["x-real-ip", "x-forwarded-for"]
    for name in candidates:
        value = lowered.get(name, "")
        first = value.split(",")[0].strip()
        if first:
            return first
    return UNKNOWN_IP


def peek_subject(authorization: str | None) -> str | None:
    """Read ``sub`` (or ``user_id``) from a bearer token WITHOUT verifying it.

    Best-effort quota key, not an authorization decision. A forged token can
    only move its bearer into another subject's quota bucket. Never use the
    result to grant access.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    if token.count(".") != 2:
        return None
    try:
        payload = json.loads(extract_compact(token.encode("ascii")).payload)
    except (JoseError, ValueError) as exc:
        logger.debug("Ignoring unreadable bearer payload: %s", exc)
        return None
    if not isinstance(payload, dict):
        return None
    subject = payload.get("sub") or payload.get("user_id")
    return str(subject) if subject else None


__all__: list[str] = [
    "UNKNOWN_IP",
    "DEFAULT_TRUSTED_IP_HEADER",
    "extract_client_ip",
    "peek_subject",
]
