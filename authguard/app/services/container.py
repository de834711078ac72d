# authguard/app/services/container.py
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.app.core.config import Settings, settings as default_settings
from authguard.app.security.api_keys import ApiKeyManager
from authguard.app.security.gate import SecurityGate
from authguard.app.security.input_validation import InputValidator
from authguard.app.security.lockout import LockoutTracker
from authguard.app.security.rate_limit import RateLimiter
from authguard.app.security.sessions import SessionRegistry
from authguard.app.services.access import SQLIPBlocklist, SQLSubscriptionEntitlement
from authguard.app.services.audit import DatabaseAuditSink
from authguard.app.services.identity import JWTIdentityProvider
from authguard.app.services.login import LoginRecorder
from authguard.app.services.stores import (
    SQLApiKeyStore,
    SQLCredentialStore,
    SQLLockoutStore,
    SQLSessionStore,
)


@dataclass
class SecurityServices:
    """Everything the API layer needs, wired once per application."""
    settings: Settings
    credentials: SQLCredentialStore
    lockout: LockoutTracker
    sessions: SessionRegistry
    rate_limiter: RateLimiter
    identity: JWTIdentityProvider
    api_keys: ApiKeyManager
    audit: DatabaseAuditSink
    blocklist: SQLIPBlocklist
    entitlement: SQLSubscriptionEntitlement
    logins: LoginRecorder
    gate: SecurityGate

    async def flush_audit(self) -> None:
        """Let in-flight security event writes finish."""
        await self.gate.events.wait_all()
        await self.lockout.events.wait_all()


def build_services(
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> SecurityServices:
    cfg = settings or default_settings

    credentials = SQLCredentialStore(sessionmaker)
    audit = DatabaseAuditSink(sessionmaker)
    blocklist = SQLIPBlocklist(sessionmaker)
    entitlement = SQLSubscriptionEntitlement(sessionmaker)
    limiter = rate_limiter or RateLimiter()

    lockout = LockoutTracker(
        SQLLockoutStore(sessionmaker),
        audit=audit,
        max_failed_attempts=cfg.MAX_FAILED_ATTEMPTS,
        lockout_duration=timedelta(minutes=cfg.LOCKOUT_DURATION_MINUTES),
        audit_timeout_seconds=cfg.COLLABORATOR_TIMEOUT_SECONDS,
    )
    sessions = SessionRegistry(
        SQLSessionStore(sessionmaker),
        default_ttl=timedelta(hours=cfg.SESSION_TTL_HOURS),
        idle_timeout=timedelta(minutes=cfg.SESSION_IDLE_TIMEOUT_MINUTES),
    )
    api_keys = ApiKeyManager(SQLApiKeyStore(sessionmaker), pepper=cfg.SECRET_KEY)
    identity = JWTIdentityProvider(
        sessions=sessions,
        api_keys=api_keys,
        api_key_header=cfg.API_KEY_HEADER,
    )

    gate = SecurityGate(
        identity=identity,
        credentials=credentials,
        lockout=lockout,
        rate_limiter=limiter,
        entitlement=entitlement,
        audit=audit,
        blocklist=blocklist,
        input_validator=InputValidator(max_body_bytes=cfg.MAX_BODY_BYTES),
        timeout_seconds=cfg.COLLABORATOR_TIMEOUT_SECONDS,
        totp_tolerance=cfg.TOTP_TOLERANCE_STEPS,
        csrf_cookie=cfg.CSRF_COOKIE_NAME,
        csrf_header=cfg.CSRF_HEADER_NAME,
        csrf_exempt_paths=cfg.csrf_exempt_paths,
        grant_cookie=cfg.TWO_FACTOR_GRANT_COOKIE,
        grant_header=cfg.TWO_FACTOR_GRANT_HEADER,
        code_header=cfg.TWO_FACTOR_CODE_HEADER,
        grant_ttl=timedelta(minutes=cfg.TWO_FACTOR_GRANT_MINUTES),
    )

    return SecurityServices(
        settings=cfg,
        credentials=credentials,
        lockout=lockout,
        sessions=sessions,
        rate_limiter=limiter,
        identity=identity,
        api_keys=api_keys,
        audit=audit,
        blocklist=blocklist,
        entitlement=entitlement,
        logins=LoginRecorder(lockout, sessions, identity, max_sessions=cfg.MAX_CONCURRENT_SESSIONS),
        gate=gate,
    )
