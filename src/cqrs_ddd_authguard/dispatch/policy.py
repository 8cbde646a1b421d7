"""Dispatch policy: route an operation to a tier and admit or reject it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from ..correlation import get_correlation_id
from ..ratelimit.tiers import RateLimitTier
from .identifiers import (
    DEFAULT_TRUSTED_IP_HEADER,
    UNKNOWN_IP,
    extract_client_ip,
    peek_subject,
)
from .operations import (
    DEFAULT_PATHS,
    DEFAULT_ROUTES,
    IdentifierRule,
    Operation,
    Route,
    operation_for_path,
    resolve,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..ratelimit.service import AbuseGuard
    from ..ratelimit.tiers import RateLimitResult, SmsLimitResult

logger = logging.getLogger("cqrs_ddd.authguard.dispatch")

DEFAULT_STATIC_PREFIXES = ("/_next", "/static")
DEFAULT_STATIC_FILES = ("/favicon.ico",)


class OperationDescriptor(BaseModel):
    """Inbound operation as handed over by a thin transport handler.

    The core never parses transport data; ``raw_body`` is carried through
    untouched for the handler that executes the operation.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    operation_id: str
    caller_ip: str = UNKNOWN_IP
    subject_id: str | None = None
    raw_body: bytes | None = None
    path: str | None = None
    correlation_id: str | None = Field(default_factory=get_correlation_id)


@dataclass(frozen=True)
class Admission:
    """Outcome of a dispatch decision.

    Attributes:
        admitted: Whether the operation may run.
        bypassed: True for static/non-API requests the guard ignores.
        tier: Tier that decided (the rejecting one for SMS).
        identifier: Key the decision was counted under.
        result: The deciding rate-limit result.
        message: Tier-specific message when rejected.
        retry_after: Seconds until a retry may succeed (rejections only).
        headers: ``X-RateLimit-*`` headers for the response.
    """

    admitted: bool
    bypassed: bool = False
    tier: RateLimitTier | None = None
    identifier: str | None = None
    result: RateLimitResult | None = None
    message: str | None = None
    retry_after: int | None = None
    headers: dict[str, str] = field(default_factory=dict)


class DispatchPolicy:
    """Maps operations to tiers and asks the abuse guard for admission.

    Example:
        ```python
        policy = DispatchPolicy(guard)
        admission = await policy.admit_request(path, headers)
        if not admission.admitted:
            return json_response(
                {"error": admission.message, "retryAfter": admission.retry_after},
                status=429,
                headers=admission.headers,
            )
        ```
    """

    def __init__(
        self,
        guard: AbuseGuard,
        *,
        routes: Mapping[Operation, Route] = DEFAULT_ROUTES,
        paths: Mapping[str, Operation] = DEFAULT_PATHS,
        trusted_ip_header: str | None = DEFAULT_TRUSTED_IP_HEADER,
        static_prefixes: tuple[str, ...] = DEFAULT_STATIC_PREFIXES,
        static_files: tuple[str, ...] = DEFAULT_STATIC_FILES,
        strict: bool = False,
    ) -> None:
        self._guard = guard
        self._routes = routes
        self._paths = paths
        self.trusted_ip_header = trusted_ip_header
        self.static_prefixes = static_prefixes
        self.static_files = static_files
        self.strict = strict

    def is_static(self, path: str) -> bool:
        """Static assets: listed prefixes/files, or any path with a dot."""
        return (
            path.startswith(self.static_prefixes)
            or path in self.static_files
            or "." in path
        )

    def describe(
        self, path: str, headers: Mapping[str, str], raw_body: bytes | None = None
    ) -> OperationDescriptor | None:
        """Build a descriptor from HTTP data, or None when the guard ignores it."""
        if self.is_static(path):
            return None
        operation = operation_for_path(path, self._paths)
        if operation is None:
            return None
        lowered = {name.lower(): value for name, value in headers.items()}
        return OperationDescriptor(
            operation_id=operation.value,
            caller_ip=extract_client_ip(lowered, self.trusted_ip_header),
            subject_id=peek_subject(lowered.get("authorization")),
            raw_body=raw_body,
            path=path,
        )

    async def admit_request(
        self, path: str, headers: Mapping[str, str], raw_body: bytes | None = None
    ) -> Admission:
        descriptor = self.describe(path, headers, raw_body)
        if descriptor is None:
            return Admission(admitted=True, bypassed=True)
        return await self.admit(descriptor)

    async def admit(self, descriptor: OperationDescriptor) -> Admission:
        """Count the operation against its tier and decide.

        Raises:
            UnroutableOperationError: In strict mode, for unknown operations.
        """
        route = resolve(descriptor.operation_id, self._routes, strict=self.strict)
        if route.rule is IdentifierRule.COMBINED:
            return await self._admit_sms(descriptor)

        identifier = descriptor.caller_ip
        if route.rule is IdentifierRule.SUBJECT and descriptor.subject_id:
            identifier = descriptor.subject_id

        result = await self._guard.check_limit(route.tier, identifier)
        return self._admission(route.tier, identifier, result)

    async def _admit_sms(self, descriptor: OperationDescriptor) -> Admission:
        sms: SmsLimitResult = await self._guard.check_sms_limits(
            descriptor.caller_ip, descriptor.subject_id
        )
        headers = {
            f"{name}-IP": value
            for name, value in self._guard.rate_limit_headers(sms.ip_result).items()
        }
        if sms.subject_result is not None:
            headers.update(
                {
                    f"{name}-User": value
                    for name, value in self._guard.rate_limit_headers(
                        sms.subject_result
                    ).items()
                }
            )

        rejected = sms.rejected_tier
        if rejected is None:
            return Admission(
                admitted=True,
                tier=RateLimitTier.SMS_IP,
                identifier=descriptor.caller_ip,
                result=sms.ip_result,
                headers=headers,
            )
        if rejected is RateLimitTier.SMS_IP:
            result, identifier = sms.ip_result, descriptor.caller_ip
        else:
            assert sms.subject_result is not None
            result, identifier = sms.subject_result, descriptor.subject_id
        logger.warning("SMS request rejected by tier %s", rejected.value)
        return Admission(
            admitted=False,
            tier=rejected,
            identifier=identifier,
            result=result,
            message=self._guard.message_for(rejected),
            retry_after=self._guard.retry_after(result),
            headers=headers,
        )

    def _admission(
        self, tier: RateLimitTier, identifier: str, result: RateLimitResult
    ) -> Admission:
        headers = self._guard.rate_limit_headers(result)
        if result.success:
            return Admission(
                admitted=True,
                tier=tier,
                identifier=identifier,
                result=result,
                headers=headers,
            )
        return Admission(
            admitted=False,
            tier=tier,
            identifier=identifier,
            result=result,
            message=self._guard.message_for(tier),
            retry_after=self._guard.retry_after(result),
            headers=headers,
        )


__all__: list[str] = [
    "OperationDescriptor",
    "Admission",
    "DispatchPolicy",
]
