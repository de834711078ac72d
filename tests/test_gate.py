"""
Tests for the security gate pipeline, using in-memory collaborators
"""
import asyncio

import pytest

from authguard.app.schemas.security import (
    BlockStatus,
    InboundRequest,
    LockoutRecord,
    Principal,
    TOTPCredential,
)
from authguard.app.security import grant, totp
from authguard.app.security.gate import PROFILES, SecurityGate, SecurityProfile
from authguard.app.security.lockout import LockoutTracker
from authguard.app.security.rate_limit import RateLimiter, RateLimitRule

PRINCIPAL = Principal(id="user-1", email="user@example.com", session_id="session-1")


class FakeIdentity:
    def __init__(self, principal=None, delay=0):
        self.principal = principal
        self.delay = delay

    async def get_current_user(self, request):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.principal

    async def record_successful_login(self, account_id, ip):
        pass

    async def record_failed_login(self, identifier, ip):
        pass


class FakeCredentials:
    def __init__(self, credential=None):
        self.credential = credential

    async def get(self, account_id):
        return self.credential

    async def upsert(self, credential):
        self.credential = credential
        return credential

    async def delete(self, account_id):
        self.credential = None
        return True

    async def consume_backup_code(self, account_id, code):
        if self.credential is None or code not in self.credential.backup_codes:
            return False
        self.credential.backup_codes.remove(code)
        return True


class FakeLockoutStore:
    def __init__(self):
        self.records = {}

    async def get(self, account_id):
        return self.records.get(account_id)

    async def increment(self, account_id, ip, now, threshold, locked_until):
        record = self.records.get(account_id) or LockoutRecord(account_id=account_id, last_attempt_at=now)
        record.failed_attempts += 1
        record.last_attempt_at = now
        record.origin_ip = ip
        if record.failed_attempts >= threshold and record.locked_until is None:
            record.locked_until = locked_until
        self.records[account_id] = record
        return record

    async def delete(self, account_id):
        self.records.pop(account_id, None)


class FakeEntitlement:
    def __init__(self, entitled=False):
        self.entitled = entitled

    async def has_active_subscription(self, account_id):
        return self.entitled


class FakeBlocklist:
    def __init__(self, blocked=(), broken=False):
        self.blocked = set(blocked)
        self.broken = broken

    async def is_blocked(self, ip):
        if self.broken:
            raise ConnectionError("blocklist store unreachable")
        return BlockStatus(blocked=ip in self.blocked)


class StalledAudit:
    """Audit sink that does not finish until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.events = []

    async def log_event(self, event):
        await self.release.wait()
        self.events.append(event)


class BrokenLimiter:
    def check(self, client_id, endpoint, rule):
        raise RuntimeError("boom")


def make_request(method="GET", path="/api/v1/items", headers=None, cookies=None, body=b""):
    return InboundRequest(
        method=method,
        path=path,
        client_ip="203.0.113.5",
        headers=headers or {},
        cookies=cookies or {},
        body=body,
    )


def enrolled_credential():
    return TOTPCredential(
        account_id=PRINCIPAL.id,
        secret=totp.generate_secret(),
        backup_codes=["A1B2C3D4", "0F0F0F0F"],
        enabled=True,
    )


@pytest.fixture
def parts(audit, clock):
    store = FakeLockoutStore()
    return {
        "identity": FakeIdentity(PRINCIPAL),
        "credentials": FakeCredentials(),
        "lockout": LockoutTracker(store, clock=clock),
        "rate_limiter": RateLimiter(),
        "entitlement": FakeEntitlement(),
        "audit": audit,
        "blocklist": FakeBlocklist(),
        "timeout_seconds": 0.2,
    }


@pytest.fixture
def make_gate(parts):
    def _make(**overrides):
        return SecurityGate(**dict(parts, **overrides))

    return _make


class TestPipelineOrder:
    async def test_public_profile_allows_anonymous(self, make_gate):
        gate = make_gate(identity=FakeIdentity(None))
        decision = await gate.evaluate(make_request(), PROFILES["public"])
        assert decision.allow
        assert decision.principal is None

    async def test_authenticated_allow_is_audited(self, make_gate, audit):
        gate = make_gate()
        decision = await gate.evaluate(make_request(), PROFILES["authenticated"])
        await gate.events.wait_all()
        assert decision.allow
        assert decision.principal == PRINCIPAL
        assert audit.types == ["successful_access"]

    async def test_blocklist_comes_first(self, make_gate, audit):
        """A blocked IP is refused before rate limiting or authentication"""
        gate = make_gate(identity=FakeIdentity(None), blocklist=FakeBlocklist({"203.0.113.5"}))
        decision = await gate.evaluate(make_request(), PROFILES["authenticated"])
        assert decision.status == 403
        await gate.events.wait_all()
        assert decision.body == {"error": "Access blocked"}
        assert audit.types == ["blocked_ip"]

    async def test_rate_limit_before_authentication(self, make_gate, audit):
        gate = make_gate(identity=FakeIdentity(None))
        profile = SecurityProfile(rate_limit=RateLimitRule(max_requests=2))

        statuses = [(await gate.evaluate(make_request(), profile)).status for _ in range(3)]
        assert statuses == [401, 401, 429]

        decision = await gate.evaluate(make_request(), profile)
        assert decision.body["error"] == "Rate limit exceeded"
        assert decision.body["remaining"] == 0
        assert int(decision.headers["Retry-After"]) == decision.body["retryAfter"] >= 1
        await gate.events.wait_all()
        assert "rate_limit_exceeded" in audit.types

    async def test_lockout_before_two_factor(self, make_gate, parts):
        credential = enrolled_credential()
        for _ in range(5):
            await parts["lockout"].record_failed_attempt(PRINCIPAL.id)

        gate = make_gate(credentials=FakeCredentials(credential))
        decision = await gate.evaluate(make_request(), PROFILES["admin"])

        assert decision.status == 401
        assert decision.body["error"] == "Account temporarily locked. Try again in 15 minutes."
        assert decision.body["retryAfter"] == 900
        assert decision.headers["Retry-After"] == "900"

    async def test_two_factor_before_subscription(self, make_gate):
        gate = make_gate(credentials=FakeCredentials(enrolled_credential()))
        decision = await gate.evaluate(make_request(), PROFILES["high_security"])
        assert decision.status == 403
        assert decision.body["error"] == "Two-factor authentication required"

    async def test_subscription_before_input_validation(self, make_gate):
        request = make_request(headers={"user-agent": "<script>"})
        decision = await make_gate().evaluate(request, PROFILES["premium"])
        assert decision.body["error"] == "Active subscription required"


class TestAuthentication:
    async def test_missing_principal(self, make_gate, audit):
        gate = make_gate(identity=FakeIdentity(None))
        decision = await gate.evaluate(make_request(), PROFILES["authenticated"])
        assert decision.status == 401
        assert decision.body == {"error": "Authentication required"}
        await gate.events.wait_all()
        assert audit.events[0].event_type == "unauthorized_access"
        assert audit.events[0].severity == "high"


class TestCsrf:
    def post(self, path="/api/v1/items", token=None, cookie=None):
        headers = {"content-type": "application/json"}
        if token:
            headers["x-csrf-token"] = token
        cookies = {"csrf_token": cookie} if cookie else {}
        return make_request("POST", path, headers=headers, cookies=cookies, body=b"{}")

    async def test_missing_token(self, make_gate, audit):
        gate = make_gate()
        decision = await gate.evaluate(self.post(), PROFILES["authenticated"])
        await gate.events.wait_all()
        assert decision.status == 403
        assert decision.body["error"] == "Invalid CSRF token"
        assert audit.types == ["csrf_violation"]

    async def test_mismatched_token(self, make_gate):
        decision = await make_gate().evaluate(self.post(token="a", cookie="b"), PROFILES["authenticated"])
        assert decision.status == 403

    async def test_matching_token(self, make_gate):
        decision = await make_gate().evaluate(self.post(token="t", cookie="t"), PROFILES["authenticated"])
        assert decision.allow

    async def test_exempt_and_non_api_paths(self, make_gate):
        gate = make_gate(csrf_exempt_paths=["/webhook"])
        assert (await gate.evaluate(self.post("/api/v1/webhook/stripe"), PROFILES["authenticated"])).allow
        assert (await gate.evaluate(self.post("/login"), PROFILES["authenticated"])).allow

    async def test_safe_methods_skip_check(self, make_gate):
        assert (await make_gate().evaluate(make_request("GET"), PROFILES["authenticated"])).allow


class TestTwoFactor:
    async def test_not_enrolled_passes_unless_enrollment_required(self, make_gate):
        gate = make_gate()
        assert (await gate.evaluate(make_request(), SecurityProfile(require_2fa=True))).allow

        decision = await gate.evaluate(make_request(), PROFILES["admin"])
        assert decision.status == 403

    async def test_disabled_credential_counts_as_not_enrolled(self, make_gate):
        credential = enrolled_credential()
        credential.enabled = False
        gate = make_gate(credentials=FakeCredentials(credential))
        assert (await gate.evaluate(make_request(), SecurityProfile(require_2fa=True))).allow

    async def test_grant_header_and_cookie(self, make_gate):
        credential = enrolled_credential()
        gate = make_gate(credentials=FakeCredentials(credential))
        token = grant.issue_grant(PRINCIPAL.id, PRINCIPAL.session_id, credential.secret)

        by_header = make_request(headers={"x-2fa-grant": token})
        by_cookie = make_request(cookies={"two_factor_grant": token})
        assert (await gate.evaluate(by_header, PROFILES["admin"])).allow
        assert (await gate.evaluate(by_cookie, PROFILES["admin"])).allow

    async def test_grant_from_other_session_is_rejected(self, make_gate):
        credential = enrolled_credential()
        gate = make_gate(credentials=FakeCredentials(credential))
        token = grant.issue_grant(PRINCIPAL.id, "another-session", credential.secret)

        decision = await gate.evaluate(make_request(headers={"x-2fa-grant": token}), PROFILES["admin"])
        assert decision.status == 403

    async def test_submitted_totp_code_issues_grant(self, make_gate):
        credential = enrolled_credential()
        gate = make_gate(credentials=FakeCredentials(credential))
        code = totp.generate_code(credential.secret)

        decision = await gate.evaluate(make_request(headers={"x-2fa-code": code}), PROFILES["admin"])

        assert decision.allow
        issued = decision.headers["X-2FA-Grant"]
        assert grant.verify_grant(issued, PRINCIPAL.id, PRINCIPAL.session_id, credential.secret)

    async def test_backup_code_is_single_use(self, make_gate, audit):
        credential = enrolled_credential()
        gate = make_gate(credentials=FakeCredentials(credential))
        request = make_request(headers={"x-2fa-code": "a1b2c3d4"})

        assert (await gate.evaluate(request, PROFILES["admin"])).allow
        assert credential.backup_codes == ["0F0F0F0F"]

        decision = await gate.evaluate(request, PROFILES["admin"])
        assert decision.status == 403
        await gate.events.wait_all()
        assert audit.types[-1] == "failed_2fa"

    async def test_wrong_code(self, make_gate, audit):
        credential = enrolled_credential()
        gate = make_gate(credentials=FakeCredentials(credential))
        wrong = next(c for c in ("000000", "111111", "222222") if not totp.verify_code(credential.secret, c))

        decision = await gate.evaluate(make_request(headers={"x-2fa-code": wrong}), PROFILES["admin"])
        assert decision.status == 403
        await gate.events.wait_all()
        assert audit.events[-1].event_type == "failed_2fa"
        assert audit.events[-1].severity == "high"


class TestSubscriptionAndInput:
    async def test_entitled_account(self, make_gate):
        gate = make_gate(entitlement=FakeEntitlement(True))
        assert (await gate.evaluate(make_request(), PROFILES["premium"])).allow

    async def test_invalid_input_details(self, make_gate):
        profile = SecurityProfile(enforce_csrf=False)
        request = make_request("POST", headers={"content-type": "text/plain"}, body=b"hello")
        decision = await make_gate().evaluate(request, profile)
        assert decision.status == 400
        assert decision.body["error"] == "Invalid input"
        assert decision.body["details"] == ["Content-Type must be application/json"]

    async def test_validation_can_be_disabled(self, make_gate):
        profile = SecurityProfile(enforce_csrf=False, validate_input=False)
        request = make_request("POST", headers={"content-type": "text/plain"}, body=b"hello")
        assert (await make_gate().evaluate(request, profile)).allow


class TestFailureHandling:
    async def test_blocklist_failure_fails_closed(self, make_gate):
        gate = make_gate(blocklist=FakeBlocklist(broken=True))
        decision = await gate.evaluate(make_request(), PROFILES["public"])
        assert decision.status == 503
        assert decision.body == {"error": "Security check failed"}

    async def test_identity_timeout_fails_closed(self, make_gate):
        gate = make_gate(identity=FakeIdentity(PRINCIPAL, delay=1), timeout_seconds=0.05)
        decision = await gate.evaluate(make_request(), PROFILES["authenticated"])
        assert decision.status == 503

    async def test_unexpected_error_denies(self, make_gate):
        gate = make_gate(rate_limiter=BrokenLimiter())
        decision = await gate.evaluate(make_request(), PROFILES["public"])
        assert not decision.allow
        assert decision.status == 500
        assert decision.body == {"error": "Security check failed"}

    async def test_audit_failure_does_not_change_decision(self, make_gate, failing_audit):
        gate = make_gate(identity=FakeIdentity(None), audit=failing_audit)
        decision = await gate.evaluate(make_request(), PROFILES["authenticated"])
        assert decision.status == 401
        await gate.events.wait_all()
        assert gate.events.pending == 0

        allowed = await make_gate(audit=failing_audit).evaluate(make_request(), PROFILES["authenticated"])
        assert allowed.allow

    async def test_lockout_message_rounds_up_minutes(self, make_gate, parts, clock):
        for _ in range(5):
            await parts["lockout"].record_failed_attempt(PRINCIPAL.id)
        clock.advance(minutes=13, seconds=30)

        decision = await make_gate().evaluate(make_request(), PROFILES["authenticated"])
        assert decision.body["error"] == "Account temporarily locked. Try again in 2 minutes."
        assert decision.body["retryAfter"] == 90


class TestBackgroundAudit:
    async def test_slow_sink_does_not_delay_deny(self, make_gate):
        sink = StalledAudit()
        gate = make_gate(identity=FakeIdentity(None), audit=sink, timeout_seconds=5)

        decision = await asyncio.wait_for(
            gate.evaluate(make_request(), PROFILES["authenticated"]), timeout=0.5
        )
        assert decision.status == 401
        assert sink.events == []
        assert gate.events.pending == 1

        sink.release.set()
        await gate.events.wait_all()
        assert [event.event_type for event in sink.events] == ["unauthorized_access"]

    async def test_slow_sink_does_not_delay_allow(self, make_gate):
        sink = StalledAudit()
        gate = make_gate(audit=sink, timeout_seconds=5)

        decision = await asyncio.wait_for(
            gate.evaluate(make_request(), PROFILES["authenticated"]), timeout=0.5
        )
        assert decision.allow

        sink.release.set()
        await gate.events.wait_all()

    async def test_write_is_abandoned_after_timeout(self, make_gate):
        sink = StalledAudit()
        gate = make_gate(identity=FakeIdentity(None), audit=sink, timeout_seconds=0.05)

        await gate.evaluate(make_request(), PROFILES["authenticated"])
        await gate.events.wait_all()

        assert gate.events.pending == 0
        assert sink.events == []
