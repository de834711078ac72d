# authguard/app/security/sessions.py
"""Active-session bookkeeping per account: creation, cap, activity, validation."""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from authguard.app.schemas.security import SessionRecord, SessionValidation, utcnow
from authguard.app.security.crypto import generate_secure_token
from authguard.app.security.interfaces import SessionStore

logger = logging.getLogger(__name__)

MAX_CONCURRENT_SESSIONS = 5
SESSION_TTL = timedelta(hours=24)
IDLE_TIMEOUT = timedelta(minutes=30)


class SessionRegistry:
    def __init__(
        self,
        store: SessionStore,
        default_ttl: timedelta = SESSION_TTL,
        idle_timeout: timedelta = IDLE_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.idle_timeout = idle_timeout
        self.clock = clock

    async def create_or_refresh_session(
        self,
        account_id: str,
        device_info: Optional[Dict[str, Any]] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """Register a new active session and return its token."""
        now = self.clock()
        record = SessionRecord(
            account_id=account_id,
            session_token=generate_secure_token(32),
            device_info=device_info or {},
            ip_address=ip,
            user_agent=user_agent,
            created_at=now,
            last_activity_at=now,
            expires_at=now + (ttl or self.default_ttl),
            is_active=True,
        )
        await self.store.create(record)
        logger.info("Session created for account %s from %s", account_id, ip)
        return record.session_token

    async def list_active(self, account_id: str) -> List[SessionRecord]:
        """Active sessions, most recently used first."""
        return await self.store.list_active(account_id)

    async def count_active(self, account_id: str) -> int:
        return len(await self.list_active(account_id))

    async def enforce_concurrency_cap(
        self,
        account_id: str,
        max_sessions: int = MAX_CONCURRENT_SESSIONS,
    ) -> int:
        """
        Keep only the `max_sessions` most recently active sessions.

        Returns the number of sessions deactivated.
        """
        terminated = await self.store.deactivate_beyond(account_id, max_sessions, self.clock())
        if terminated:
            logger.info(
                "Terminated %d oldest session(s) for account %s (cap=%d)",
                terminated, account_id, max_sessions,
            )
        return terminated

    async def touch_activity(self, account_id: str, session_token: Optional[str] = None) -> int:
        """
        Stamp last_activity_at on the caller's active session(s).

        The idle-timeout policy is applied by whoever reads the field
        (see validate_session), not here.
        """
        return await self.store.touch(account_id, self.clock(), session_token)

    async def terminate_session(self, session_token: str) -> bool:
        return await self.store.deactivate([session_token], self.clock()) > 0

    async def validate_session(
        self,
        session_token: str,
        idle_timeout: Optional[timedelta] = None,
    ) -> SessionValidation:
        record = await self.store.get(session_token)
        if record is None or not record.is_active:
            return SessionValidation(valid=False, reason="inactive")

        now = self.clock()
        if now >= record.expires_at:
            return SessionValidation(valid=False, account_id=record.account_id, reason="expired")
        if now - record.last_activity_at > (idle_timeout or self.idle_timeout):
            return SessionValidation(valid=False, account_id=record.account_id, reason="idle")

        return SessionValidation(
            valid=True,
            account_id=record.account_id,
            expires_at=record.expires_at,
        )
