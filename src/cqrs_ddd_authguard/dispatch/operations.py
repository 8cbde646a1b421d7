"""Closed operation table: which tier guards an operation and how it is keyed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from ..exceptions import UnroutableOperationError
from ..ratelimit.tiers import RateLimitTier

if TYPE_CHECKING:
    from collections.abc import Mapping


class Operation(str, Enum):
    """Every operation the guard knows how to route."""

    # Authentication
    SIGN_IN = "auth.sign_in"
    SIGN_UP = "auth.sign_up"
    SIGN_OUT = "auth.sign_out"
    PASSWORD_RESET = "auth.password_reset"
    EMAIL_VERIFY = "auth.email_verify"

    # MFA
    MFA_SETUP = "mfa.setup"
    MFA_VERIFY = "mfa.verify"
    MFA_DISABLE = "mfa.disable"
    MFA_STATUS = "mfa.status"
    BACKUP_CODES_REGENERATE = "mfa.backup_codes.regenerate"

    # SMS
    SMS_SEND = "sms.send"
    SMS_VERIFY = "sms.verify"

    # Exports
    DATA_EXPORT = "export.data"
    ADMIN_EXPORT = "export.admin"
    ANALYTICS_EXPORT = "export.analytics"

    # Authenticated
    USER_PROFILE = "user.profile"
    USER_SETTINGS = "user.settings"
    DASHBOARD = "dashboard"

    # Any other API call
    API = "api"


class IdentifierRule(str, Enum):
    """How the rate-limit identifier is derived from a request."""

    IP = "ip"
    SUBJECT = "subject"  # falls back to the IP when no subject is known
    COMBINED = "combined"  # IP and subject budgets both apply


@dataclass(frozen=True)
class Route:
    tier: RateLimitTier
    rule: IdentifierRule


_AUTH = Route(RateLimitTier.AUTH_OPERATIONS, IdentifierRule.IP)
_EXPORT = Route(RateLimitTier.DATA_EXPORT, IdentifierRule.SUBJECT)
_AUTHENTICATED = Route(RateLimitTier.AUTHENTICATED, IdentifierRule.SUBJECT)
_SMS = Route(RateLimitTier.SMS_IP, IdentifierRule.COMBINED)

DEFAULT_ROUTES: Mapping[Operation, Route] = MappingProxyType(
    {
        Operation.SIGN_IN: _AUTH,
        Operation.SIGN_UP: _AUTH,
        Operation.SIGN_OUT: _AUTH,
        Operation.PASSWORD_RESET: _AUTH,
        Operation.EMAIL_VERIFY: _AUTH,
        Operation.MFA_SETUP: _AUTH,
        Operation.MFA_VERIFY: _AUTH,
        Operation.MFA_DISABLE: _AUTH,
        Operation.MFA_STATUS: _AUTHENTICATED,
        Operation.BACKUP_CODES_REGENERATE: _EXPORT,
        Operation.SMS_SEND: _SMS,
        Operation.SMS_VERIFY: _SMS,
        Operation.DATA_EXPORT: _EXPORT,
        Operation.ADMIN_EXPORT: _EXPORT,
        Operation.ANALYTICS_EXPORT: _EXPORT,
        Operation.USER_PROFILE: _AUTHENTICATED,
        Operation.USER_SETTINGS: _AUTHENTICATED,
        Operation.DASHBOARD: _AUTHENTICATED,
        Operation.API: Route(RateLimitTier.GENERAL, IdentifierRule.IP),
    }
)

# Path lookup for HTTP adapters. Exact matches only.
DEFAULT_PATHS: Mapping[str, Operation] = MappingProxyType(
    {
        "/api/auth/signin": Operation.SIGN_IN,
        "/api/auth/signup": Operation.SIGN_UP,
        "/api/auth/logout": Operation.SIGN_OUT,
        "/api/auth/reset-password": Operation.PASSWORD_RESET,
        "/api/auth/verify": Operation.EMAIL_VERIFY,
        "/api/auth/2fa/setup": Operation.MFA_SETUP,
        "/api/auth/2fa/verify": Operation.MFA_VERIFY,
        "/api/auth/2fa/disable": Operation.MFA_DISABLE,
        "/api/auth/2fa/status": Operation.MFA_STATUS,
        "/api/auth/2fa/backup-codes": Operation.BACKUP_CODES_REGENERATE,
        "/api/sms/send": Operation.SMS_SEND,
        "/api/sms/verify": Operation.SMS_VERIFY,
        "/api/data/export": Operation.DATA_EXPORT,
        "/api/admin/export": Operation.ADMIN_EXPORT,
        "/api/analytics/export": Operation.ANALYTICS_EXPORT,
        "/api/user/profile": Operation.USER_PROFILE,
        "/api/user/settings": Operation.USER_SETTINGS,
        "/api/dashboard": Operation.DASHBOARD,
    }
)

API_PREFIX = "/api/"


def parse_operation(operation_id: str | Operation) -> Operation | None:
    if isinstance(operation_id, Operation):
        return operation_id
    try:
        return Operation(operation_id)
    except ValueError:
        return None


def operation_for_path(
    path: str, paths: Mapping[str, Operation] = DEFAULT_PATHS
) -> Operation | None:
    """Map a request path to an operation.

    Unlisted API paths map to ``Operation.API`` so they are protected by
    default; non-API paths map to None.
    """
    normalized = path.rstrip("/") or "/"
    operation = paths.get(normalized)
    if operation is not None:
        return operation
    if path.startswith(API_PREFIX):
        return Operation.API
    return None


def resolve(
    operation_id: str | Operation,
    routes: Mapping[Operation, Route] = DEFAULT_ROUTES,
    *,
    strict: bool = False,
) -> Route:
    """Look up the route for an operation.

    Unknown operations get the ``Operation.API`` route unless ``strict``.

    Raises:
        UnroutableOperationError: In strict mode, for an unknown operation or
            one without a route.
    """
    operation = parse_operation(operation_id)
    route = routes.get(operation) if operation is not None else None
    if route is not None:
        return route
    if strict:
        raise UnroutableOperationError(
            operation.value if operation is not None else str(operation_id)
        )
    return routes.get(Operation.API, DEFAULT_ROUTES[Operation.API])


__all__: list[str] = [
    "Operation",
    "IdentifierRule",
    "Route",
    "DEFAULT_ROUTES",
    "DEFAULT_PATHS",
    "parse_operation",
    "operation_for_path",
    "resolve",
]
