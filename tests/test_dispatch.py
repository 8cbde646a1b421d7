"""Tests for the dispatch policy, operation table and identifier extraction."""

from __future__ import annotations

import base64
import json
from typing import Any

import pytest
from pydantic import ValidationError

from cqrs_ddd_authguard.correlation import correlation_scope
from cqrs_ddd_authguard.dispatch import (
    DEFAULT_ROUTES,
    DispatchPolicy,
    IdentifierRule,
    Operation,
    OperationDescriptor,
    extract_client_ip,
    operation_for_path,
    peek_subject,
    resolve,
)
from cqrs_ddd_authguard.exceptions import UnroutableOperationError
from cqrs_ddd_authguard.ratelimit import (
    AbuseGuard,
    InMemorySlidingWindowStore,
    RateLimitTier,
)

IP = "203.0.113.7"


def _segment(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def bearer(claims: dict[str, Any]) -> str:
    """Unsigned-looking bearer token; the signature is never checked."""
    header = _segment({"alg": "HS256", "typ": "JWT"})
    return f"Bearer {header}.{_segment(claims)}.c2lnbmF0dXJl"


@pytest.fixture
def policy(guard: AbuseGuard) -> DispatchPolicy:
    return DispatchPolicy(guard)


class TestExtractClientIp:
    """Test caller IP precedence."""

    def test_trusted_header_wins(self) -> None:
        headers = {
            "CF-Connecting-IP": "1.1.1.1",
            "X-Real-IP": "2.2.2.2",
            "X-Forwarded-For": "3.3.3.3",
        }
        assert extract_client_ip(headers) == "1.1.1.1"

    def test_real_ip_before_forwarded_for(self) -> None:
        headers = {"x-real-ip": "2.2.2.2", "x-forwarded-for": "3.3.3.3"}
        assert extract_client_ip(headers) == "2.2.2.2"

    def test_first_forwarded_for_entry(self) -> None:
        headers = {"x-forwarded-for": " 3.3.3.3 , 10.0.0.1"}
        assert extract_client_ip(headers) == "3.3.3.3"

    def test_custom_trusted_header(self) -> None:
        headers = {"cf-connecting-ip": "1.1.1.1", "fly-client-ip": "4.4.4.4"}
        assert extract_client_ip(headers, "Fly-Client-IP") == "4.4.4.4"

    def test_no_trusted_header(self) -> None:
        headers = {"cf-connecting-ip": "1.1.1.1", "x-real-ip": "2.2.2.2"}
        assert extract_client_ip(headers, None) == "2.2.2.2"

    def test_unknown(self) -> None:
        assert extract_client_ip({}) == "unknown"
        assert extract_client_ip({"x-forwarded-for": ""}) == "unknown"


class TestPeekSubject:
    """Test the unverified subject peek."""

    def test_reads_sub(self) -> None:
        assert peek_subject(bearer({"sub": "user-1"})) == "user-1"

    def test_falls_back_to_user_id(self) -> None:
        assert peek_subject(bearer({"user_id": 42})) == "42"

    @pytest.mark.parametrize(
        "authorization",
        [
            None,
            "",
            "Basic dXNlcjpwYXNz",
            "Bearer opaque-token",
            "Bearer a.b.c.d",
            "Bearer !!!.@@@.###",
            "Bearer ünïcode.ünïcode.ünïcode",
        ],
    )
    def test_unreadable_tokens_yield_none(self, authorization: str | None) -> None:
        assert peek_subject(authorization) is None

    def test_token_without_subject(self) -> None:
        assert peek_subject(bearer({"scope": "read"})) is None

    def test_non_object_payload(self) -> None:
        header = _segment({"alg": "none"})
        payload = base64.urlsafe_b64encode(b"[1, 2]").rstrip(b"=").decode()
        assert peek_subject(f"Bearer {header}.{payload}.sig") is None


class TestOperationTable:
    """Test operation routing."""

    def test_every_operation_has_a_route(self) -> None:
        assert set(DEFAULT_ROUTES) == set(Operation)

    @pytest.mark.parametrize(
        ("operation", "tier", "rule"),
        [
            (Operation.SIGN_IN, RateLimitTier.AUTH_OPERATIONS, IdentifierRule.IP),
            (Operation.MFA_VERIFY, RateLimitTier.AUTH_OPERATIONS, IdentifierRule.IP),
            (Operation.SMS_SEND, RateLimitTier.SMS_IP, IdentifierRule.COMBINED),
            (Operation.DATA_EXPORT, RateLimitTier.DATA_EXPORT, IdentifierRule.SUBJECT),
            (
                Operation.BACKUP_CODES_REGENERATE,
                RateLimitTier.DATA_EXPORT,
                IdentifierRule.SUBJECT,
            ),
            (
                Operation.USER_PROFILE,
                RateLimitTier.AUTHENTICATED,
                IdentifierRule.SUBJECT,
            ),
            (Operation.API, RateLimitTier.GENERAL, IdentifierRule.IP),
        ],
    )
    def test_routes(
        self, operation: Operation, tier: RateLimitTier, rule: IdentifierRule
    ) -> None:
        route = resolve(operation)
        assert route.tier is tier
        assert route.rule is rule

    def test_resolve_accepts_ids(self) -> None:
        assert resolve("auth.sign_in") == DEFAULT_ROUTES[Operation.SIGN_IN]

    def test_unknown_operation_falls_back_to_general(self) -> None:
        assert resolve("reports.weekly").tier is RateLimitTier.GENERAL

    def test_unknown_operation_rejected_in_strict_mode(self) -> None:
        with pytest.raises(UnroutableOperationError, match="reports.weekly"):
            resolve("reports.weekly", strict=True)

    def test_unrouted_operation_rejected_in_strict_mode(self) -> None:
        routes = {Operation.API: DEFAULT_ROUTES[Operation.API]}
        with pytest.raises(UnroutableOperationError):
            resolve(Operation.SIGN_IN, routes, strict=True)

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/api/auth/signin", Operation.SIGN_IN),
            ("/api/auth/signin/", Operation.SIGN_IN),
            ("/api/auth/2fa/verify", Operation.MFA_VERIFY),
            ("/api/sms/send", Operation.SMS_SEND),
            ("/api/data/export", Operation.DATA_EXPORT),
            ("/api/widgets", Operation.API),
            ("/about", None),
            ("/", None),
        ],
    )
    def test_operation_for_path(self, path: str, expected: Operation | None) -> None:
        assert operation_for_path(path) is expected


class TestDescribe:
    """Test building descriptors from HTTP data."""

    @pytest.mark.parametrize(
        "path", ["/_next/static/app.js", "/static/logo", "/favicon.ico", "/a.png"]
    )
    def test_static_assets_are_ignored(
        self, policy: DispatchPolicy, path: str
    ) -> None:
        assert policy.is_static(path)
        assert policy.describe(path, {}) is None

    def test_non_api_paths_are_ignored(self, policy: DispatchPolicy) -> None:
        assert policy.describe("/pricing", {}) is None

    def test_descriptor_fields(self, policy: DispatchPolicy) -> None:
        descriptor = policy.describe(
            "/api/data/export",
            {"X-Real-IP": IP, "Authorization": bearer({"sub": "user-1"})},
            raw_body=b'{"format": "csv"}',
        )

        assert descriptor is not None
        assert descriptor.operation_id == "export.data"
        assert descriptor.caller_ip == IP
        assert descriptor.subject_id == "user-1"
        assert descriptor.raw_body == b'{"format": "csv"}'
        assert descriptor.path == "/api/data/export"

    def test_descriptor_picks_up_correlation_id(self) -> None:
        with correlation_scope("req-123"):
            descriptor = OperationDescriptor(operation_id="auth.sign_in")
        assert descriptor.correlation_id == "req-123"

    def test_descriptor_is_immutable(self) -> None:
        descriptor = OperationDescriptor(operation_id="auth.sign_in")
        with pytest.raises(ValidationError):
            descriptor.caller_ip = "1.2.3.4"  # type: ignore[misc]


class TestAdmission:
    """Test end-to-end admission decisions."""

    @pytest.mark.asyncio
    async def test_static_request_bypasses_guard(self, policy: DispatchPolicy) -> None:
        admission = await policy.admit_request("/favicon.ico", {})
        assert admission.admitted
        assert admission.bypassed
        assert admission.headers == {}

    @pytest.mark.asyncio
    async def test_sign_in_throttled_per_ip(self, policy: DispatchPolicy) -> None:
        headers = {"cf-connecting-ip": IP}
        for _ in range(10):
            admission = await policy.admit_request("/api/auth/signin", headers)
            assert admission.admitted

        rejected = await policy.admit_request("/api/auth/signin", headers)

        assert not rejected.admitted
        assert rejected.tier is RateLimitTier.AUTH_OPERATIONS
        assert rejected.identifier == IP
        assert rejected.retry_after == 10
        assert rejected.message is not None
        assert "10 seconds" in rejected.message
        assert rejected.headers["X-RateLimit-Remaining"] == "0"

        other = await policy.admit_request(
            "/api/auth/signin", {"cf-connecting-ip": "198.51.100.1"}
        )
        assert other.admitted

    @pytest.mark.asyncio
    async def test_exports_keyed_by_subject_across_ips(
        self, policy: DispatchPolicy
    ) -> None:
        token = bearer({"sub": "user-1"})
        for index in range(3):
            admission = await policy.admit_request(
                "/api/data/export",
                {"x-real-ip": f"10.0.0.{index}", "authorization": token},
            )
            assert admission.admitted
            assert admission.identifier == "user-1"

        rejected = await policy.admit_request(
            "/api/data/export", {"x-real-ip": "10.0.0.99", "authorization": token}
        )
        assert not rejected.admitted
        assert rejected.message is not None
        assert "tomorrow" in rejected.message

    @pytest.mark.asyncio
    async def test_subject_rule_falls_back_to_ip(self, policy: DispatchPolicy) -> None:
        admission = await policy.admit_request("/api/user/profile", {"x-real-ip": IP})

        assert admission.tier is RateLimitTier.AUTHENTICATED
        assert admission.identifier == IP

    @pytest.mark.asyncio
    async def test_unlisted_api_path_uses_general_tier(
        self, policy: DispatchPolicy
    ) -> None:
        admission = await policy.admit_request("/api/widgets", {"x-real-ip": IP})

        assert admission.admitted
        assert admission.tier is RateLimitTier.GENERAL
        assert admission.headers["X-RateLimit-Limit"] == "1000"

    @pytest.mark.asyncio
    async def test_sms_reports_both_budgets(self, policy: DispatchPolicy) -> None:
        headers = {"x-real-ip": IP, "authorization": bearer({"sub": "user-1"})}

        admission = await policy.admit_request("/api/sms/send", headers)

        assert admission.admitted
        assert admission.headers["X-RateLimit-Limit-IP"] == "5"
        assert admission.headers["X-RateLimit-Remaining-IP"] == "4"
        assert admission.headers["X-RateLimit-Limit-User"] == "3"
        assert admission.headers["X-RateLimit-Remaining-User"] == "2"

    @pytest.mark.asyncio
    async def test_sms_subject_budget_rejects(self, policy: DispatchPolicy) -> None:
        headers = {"x-real-ip": IP, "authorization": bearer({"sub": "user-1"})}
        for _ in range(3):
            assert (await policy.admit_request("/api/sms/send", headers)).admitted

        rejected = await policy.admit_request("/api/sms/send", headers)

        assert not rejected.admitted
        assert rejected.tier is RateLimitTier.SMS_SUBJECT
        assert rejected.identifier == "user-1"
        assert rejected.retry_after == 3600

    @pytest.mark.asyncio
    async def test_anonymous_sms_only_counts_ip(self, policy: DispatchPolicy) -> None:
        admission = await policy.admit_request("/api/sms/send", {"x-real-ip": IP})

        assert admission.admitted
        assert "X-RateLimit-Limit-User" not in admission.headers

    @pytest.mark.asyncio
    async def test_strict_policy_rejects_unknown_operation(
        self, guard: AbuseGuard
    ) -> None:
        policy = DispatchPolicy(guard, strict=True)
        with pytest.raises(UnroutableOperationError):
            await policy.admit(OperationDescriptor(operation_id="reports.weekly"))

    @pytest.mark.asyncio
    async def test_degraded_guard_admits_with_fallback_header(
        self, clock: Any
    ) -> None:
        class BrokenStore(InMemorySlidingWindowStore):
            async def hit(self, *args: Any, **kwargs: Any) -> Any:
                raise ConnectionError("store down")

        policy = DispatchPolicy(AbuseGuard(BrokenStore(), clock=clock))

        admission = await policy.admit_request("/api/auth/signin", {"x-real-ip": IP})

        assert admission.admitted
        assert admission.headers["X-RateLimit-Status"] == "fallback"
