# authguard/app/services/login.py
"""
Bookkeeping around the authentication step.

The password check itself belongs to the identity service. Whatever
performs it calls on_success / on_failure so lockout counters and the
session registry stay in step with the outcome.
"""
import logging
from typing import Any, Dict, Optional

from authguard.app.schemas.security import LockoutStatus
from authguard.app.security.interfaces import IdentityProvider
from authguard.app.security.lockout import LockoutTracker
from authguard.app.security.sessions import MAX_CONCURRENT_SESSIONS, SessionRegistry

logger = logging.getLogger(__name__)


class LoginRecorder:
    def __init__(
        self,
        lockout: LockoutTracker,
        sessions: SessionRegistry,
        identity: Optional[IdentityProvider] = None,
        max_sessions: int = MAX_CONCURRENT_SESSIONS,
    ):
        self.lockout = lockout
        self.sessions = sessions
        self.identity = identity
        self.max_sessions = max_sessions

    async def on_success(
        self,
        account_id: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Clear failures, open a session, enforce the cap. Returns the session token."""
        await self.lockout.clear_attempts(account_id)
        token = await self.sessions.create_or_refresh_session(
            account_id, device_info=device_info, ip=ip, user_agent=user_agent
        )
        await self.sessions.enforce_concurrency_cap(account_id, self.max_sessions)
        if self.identity is not None:
            await self.identity.record_successful_login(account_id, ip)
        return token

    async def on_failure(self, account_id: str, ip: Optional[str] = None) -> LockoutStatus:
        status = await self.lockout.record_failed_attempt(account_id, ip)
        if self.identity is not None:
            await self.identity.record_failed_login(account_id, ip)
        return status
