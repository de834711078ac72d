# authguard/app/security/gate.py
"""
Security Gate: one ordered pass/deny decision per inbound request.

Order is fixed and must not change:
    1. IP blocklist            -> 403
    2. Rate limit              -> 429 (+ Retry-After)
    3. CSRF double-submit      -> 403   (mutating /api/ requests)
    4. Authentication presence -> 401
    5. Account lockout         -> 401 (+ Retry-After)
    6. Two-factor requirement  -> 403
    7. Subscription            -> 403
    8. Input validation        -> 400
    9. Allow (audited)

Rate limiting runs before authentication so unauthenticated callers cannot
measure auth state timing; lockout runs before 2FA so no HMAC work is spent
on a locked account.

Every deny is audited. Audit writes run in the background and never delay
the decision; their failures are logged and dropped. A collaborator failure or timeout on any other step fails closed.
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Dict, Iterable, Optional, TypeVar

from authguard.app.core.errors import CollaboratorError
from authguard.app.schemas.security import (
    GateDecision,
    InboundRequest,
    Principal,
    SecurityEvent,
    Severity,
    TOTPCredential,
)
from authguard.app.security import grant, totp
from authguard.app.security.audit_dispatch import BackgroundAudit
from authguard.app.security.crypto import constant_time_compare
from authguard.app.security.input_validation import InputValidator
from authguard.app.security.interfaces import (
    AuditSink,
    CredentialStore,
    EntitlementChecker,
    IdentityProvider,
    IPBlocklist,
)
from authguard.app.security.lockout import LockoutTracker
from authguard.app.security.rate_limit import RateLimiter, RateLimitRule

logger = logging.getLogger(__name__)

T = TypeVar("T")

CSRF_METHODS = ("POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True)
class SecurityProfile:
    """What a route demands from the gate."""
    require_auth: bool = True
    require_2fa: bool = False
    # Deny accounts that have not enrolled in 2FA at all
    require_2fa_enrollment: bool = False
    require_subscription: bool = False
    rate_limit: Optional[RateLimitRule] = RateLimitRule()
    validate_input: bool = True
    enforce_csrf: bool = True
    log_success: bool = True


PROFILES: Dict[str, SecurityProfile] = {
    "public": SecurityProfile(
        require_auth=False,
        rate_limit=RateLimitRule(window_ms=60 * 1000, max_requests=100),
    ),
    "authenticated": SecurityProfile(
        rate_limit=RateLimitRule(window_ms=60 * 1000, max_requests=50),
    ),
    "premium": SecurityProfile(
        require_subscription=True,
        rate_limit=RateLimitRule(window_ms=60 * 1000, max_requests=30),
    ),
    "admin": SecurityProfile(
        require_2fa=True,
        require_2fa_enrollment=True,
        rate_limit=RateLimitRule(window_ms=60 * 1000, max_requests=20),
    ),
    "high_security": SecurityProfile(
        require_2fa=True,
        require_subscription=True,
        rate_limit=RateLimitRule(window_ms=60 * 1000, max_requests=10),
    ),
}


class SecurityGate:
    def __init__(
        self,
        identity: IdentityProvider,
        credentials: CredentialStore,
        lockout: LockoutTracker,
        rate_limiter: RateLimiter,
        entitlement: EntitlementChecker,
        audit: AuditSink,
        blocklist: IPBlocklist,
        input_validator: Optional[InputValidator] = None,
        timeout_seconds: float = 2.0,
        totp_tolerance: int = 1,
        csrf_cookie: str = "csrf_token",
        csrf_header: str = "X-CSRF-Token",
        csrf_exempt_paths: Iterable[str] = (),
        grant_cookie: str = "two_factor_grant",
        grant_header: str = "X-2FA-Grant",
        code_header: str = "X-2FA-Code",
        grant_ttl: timedelta = grant.GRANT_TTL,
    ):
        self.identity = identity
        self.credentials = credentials
        self.lockout = lockout
        self.rate_limiter = rate_limiter
        self.entitlement = entitlement
        self.audit = audit
        self.events = BackgroundAudit(audit, timeout_seconds)
        self.blocklist = blocklist
        self.input_validator = input_validator or InputValidator()
        self.timeout_seconds = timeout_seconds
        self.totp_tolerance = totp_tolerance
        self.csrf_cookie = csrf_cookie
        self.csrf_header = csrf_header
        self.csrf_exempt_paths = tuple(csrf_exempt_paths)
        self.grant_cookie = grant_cookie
        self.grant_header = grant_header
        self.code_header = code_header
        self.grant_ttl = grant_ttl

    async def evaluate(self, request: InboundRequest, profile: SecurityProfile) -> GateDecision:
        try:
            return await self._run(request, profile)
        except CollaboratorError as exc:
            logger.error("Security check failed closed on %s: %s", request.path, exc)
            return GateDecision.deny(503, "Security check failed")
        except Exception:
            logger.exception("Unexpected error in security gate for %s", request.path)
            return GateDecision.deny(500, "Security check failed")

    async def _run(self, request: InboundRequest, profile: SecurityProfile) -> GateDecision:
        # 1. IP blocklist
        block = await self._call("ip_blocklist", self.blocklist.is_blocked(request.client_ip))
        if block.blocked:
            self._audit(request, "blocked_ip", "high", None, {"path": request.path})
            return GateDecision.deny(403, "Access blocked")

        # 2. Rate limit
        if profile.rate_limit is not None:
            result = self.rate_limiter.check(request.client_ip, request.path, profile.rate_limit)
            if not result.allowed:
                self._audit(
                    request, "rate_limit_exceeded", "medium", None,
                    {"endpoint": request.path, "limit": result.limit},
                )
                return GateDecision.deny(
                    429,
                    "Rate limit exceeded",
                    retry_after=result.retry_after_seconds,
                    remaining=result.remaining,
                )

        # 3. CSRF
        if profile.enforce_csrf and self._csrf_applies(request) and not self._csrf_valid(request):
            self._audit(request, "csrf_violation", "medium", None, {"endpoint": request.path})
            return GateDecision.deny(403, "Invalid CSRF token")

        # 4. Authentication presence
        principal: Optional[Principal] = None
        headers: Dict[str, str] = {}
        if profile.require_auth:
            principal = await self._call("identity_provider", self.identity.get_current_user(request))
            if principal is None:
                self._audit(request, "unauthorized_access", "high", None, {"endpoint": request.path})
                return GateDecision.deny(401, "Authentication required")

            # 5. Lockout
            status = await self._call("lockout_store", self.lockout.check_lockout(principal.id))
            if status.locked:
                minutes = max(1, math.ceil(status.remaining_seconds / 60))
                self._audit(
                    request, "locked_account_access", "high", principal.id,
                    {"remaining_seconds": status.remaining_seconds},
                )
                return GateDecision.deny(
                    401,
                    f"Account temporarily locked. Try again in {minutes} minutes.",
                    retry_after=status.remaining_seconds,
                )

            # 6. Two-factor
            if profile.require_2fa or profile.require_2fa_enrollment:
                denial = await self._check_two_factor(request, profile, principal, headers)
                if denial is not None:
                    return denial

        # 7. Subscription
        if profile.require_subscription:
            entitled = False
            if principal is not None:
                entitled = await self._call(
                    "entitlement", self.entitlement.has_active_subscription(principal.id)
                )
            if not entitled:
                self._audit(
                    request, "subscription_required", "low",
                    principal.id if principal else None, {"endpoint": request.path},
                )
                return GateDecision.deny(403, "Active subscription required")

        # 8. Input validation
        if profile.validate_input:
            validation = self.input_validator.validate(request)
            if not validation.valid:
                self._audit(
                    request, "invalid_input", "medium",
                    principal.id if principal else None, {"errors": validation.errors},
                )
                return GateDecision.deny(400, "Invalid input", details=validation.errors)

        # 9. Allow
        if profile.log_success:
            self._audit(
                request, "successful_access", "low",
                principal.id if principal else None, {"endpoint": request.path},
            )
        decision = GateDecision.allowed(principal)
        decision.headers.update(headers)
        return decision

    async def _check_two_factor(
        self,
        request: InboundRequest,
        profile: SecurityProfile,
        principal: Principal,
        headers: Dict[str, str],
    ) -> Optional[GateDecision]:
        credential = await self._call("credential_store", self.credentials.get(principal.id))
        enabled = credential is not None and credential.enabled

        if not enabled:
            if profile.require_2fa_enrollment:
                self._audit(request, "2fa_required", "medium", principal.id, {"enrolled": False})
                return GateDecision.deny(403, "Two-factor authentication required")
            return None

        if not profile.require_2fa:
            return None

        token = request.header(self.grant_header) or request.cookies.get(self.grant_cookie)
        if grant.verify_grant(token, principal.id, principal.session_id, credential.secret):
            return None

        code = request.header(self.code_header)
        if code and await self._verify_submitted_code(principal, credential, code):
            headers[self.grant_header] = grant.issue_grant(
                principal.id, principal.session_id, credential.secret, ttl=self.grant_ttl
            )
            return None

        if code:
            self._audit(request, "failed_2fa", "high", principal.id, {"code_length": len(code.strip())})
        else:
            self._audit(request, "2fa_required", "medium", principal.id, {"enrolled": True})
        return GateDecision.deny(403, "Two-factor authentication required")

    async def _verify_submitted_code(
        self,
        principal: Principal,
        credential: TOTPCredential,
        code: str,
    ) -> bool:
        candidate = code.strip()
        if len(candidate) == totp.DIGITS and candidate.isdigit():
            return totp.verify_code(credential.secret, candidate, tolerance=self.totp_tolerance)

        normalized = totp.normalize_backup_code(candidate)
        if len(normalized) == totp.BACKUP_CODE_BYTES * 2 and totp.verify_backup_code(
            normalized, credential.backup_codes
        ):
            consumed = await self._call(
                "credential_store",
                self.credentials.consume_backup_code(principal.id, normalized),
            )
            if consumed:
                logger.info("Backup code consumed for account %s", principal.id)
            return consumed
        return False

    def _csrf_applies(self, request: InboundRequest) -> bool:
        if request.method.upper() not in CSRF_METHODS:
            return False
        if not request.path.startswith("/api/"):
            return False
        return not any(fragment in request.path for fragment in self.csrf_exempt_paths)

    def _csrf_valid(self, request: InboundRequest) -> bool:
        cookie = request.cookies.get(self.csrf_cookie)
        header = request.header(self.csrf_header)
        if not cookie or not header:
            return False
        return constant_time_compare(cookie, header)

    async def _call(self, collaborator: str, awaitable: Awaitable[T]) -> T:
        """Bound a critical collaborator call; any failure becomes CollaboratorError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise CollaboratorError(collaborator, "timed out") from exc
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorError(collaborator, type(exc).__name__) from exc

    def _audit(
        self,
        request: InboundRequest,
        event_type: str,
        severity: Severity,
        account_id: Optional[str],
        details: dict,
    ) -> None:
        event = SecurityEvent(
            account_id=account_id,
            event_type=event_type,
            severity=severity,
            details=details,
            ip_address=request.client_ip,
            user_agent=request.user_agent,
        )
        self.events.emit(event)
