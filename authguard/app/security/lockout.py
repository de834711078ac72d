# authguard/app/security/lockout.py
"""
Account lockout after repeated authentication failures.

Clear -> Warning (1..4 failures) -> Locked (5th failure, 15 minutes) -> Clear

Failures are counted per account, not per IP, so credential stuffing
spread over many IPs still trips the lock. The IP is kept for forensics;
the IP blocklist handles one IP attacking many accounts.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from authguard.app.schemas.security import LockoutStatus, SecurityEvent, utcnow
from authguard.app.security.audit_dispatch import BackgroundAudit
from authguard.app.security.interfaces import AuditSink, LockoutStore

logger = logging.getLogger(__name__)

# Maximum failed attempts before lockout
MAX_FAILED_ATTEMPTS = 5

# Lockout duration in minutes
LOCKOUT_DURATION_MINUTES = 15


class LockoutTracker:
    def __init__(
        self,
        store: LockoutStore,
        audit: Optional[AuditSink] = None,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        lockout_duration: timedelta = timedelta(minutes=LOCKOUT_DURATION_MINUTES),
        clock: Callable[[], datetime] = utcnow,
        audit_timeout_seconds: float = 2.0,
    ):
        self.store = store
        self.audit = audit
        self.events = BackgroundAudit(audit, audit_timeout_seconds)
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = lockout_duration
        self.clock = clock

    async def check_lockout(self, account_id: str) -> LockoutStatus:
        """
        Report whether the account is locked.

        An expired lock is deleted here (lazy expiry, no background sweep).
        """
        record = await self.store.get(account_id)
        if record is None:
            return LockoutStatus(locked=False)

        now = self.clock()
        if record.locked_until is None:
            return LockoutStatus(locked=False, failed_attempts=record.failed_attempts)

        if now < record.locked_until:
            remaining = math.ceil((record.locked_until - now).total_seconds())
            return LockoutStatus(
                locked=True,
                remaining_seconds=remaining,
                failed_attempts=record.failed_attempts,
            )

        await self.store.delete(account_id)
        logger.info("Lockout expired for account %s", account_id)
        return LockoutStatus(locked=False)

    async def record_failed_attempt(self, account_id: str, ip: Optional[str] = None) -> LockoutStatus:
        # An expired lock starts a fresh count
        await self.check_lockout(account_id)

        now = self.clock()
        record = await self.store.increment(
            account_id,
            ip,
            now=now,
            threshold=self.max_failed_attempts,
            locked_until=now + self.lockout_duration,
        )

        locked = record.locked_until is not None and now < record.locked_until
        if locked:
            logger.warning(
                "Account %s locked after %d failed attempts (ip=%s)",
                account_id, record.failed_attempts, ip,
            )
        else:
            logger.info("Failed attempt %d for account %s", record.failed_attempts, account_id)

        self.events.emit(
            SecurityEvent(
                account_id=account_id,
                event_type="account_locked" if locked else "failed_login",
                severity="high" if locked else "medium",
                details={"failed_attempts": record.failed_attempts},
                ip_address=ip,
            )
        )

        remaining = math.ceil((record.locked_until - now).total_seconds()) if locked else 0
        return LockoutStatus(
            locked=locked,
            remaining_seconds=remaining,
            failed_attempts=record.failed_attempts,
        )

    async def clear_attempts(self, account_id: str) -> None:
        """Forget all failures; called on successful authentication."""
        await self.store.delete(account_id)

    def attempts_remaining(self, status: LockoutStatus) -> int:
        return max(0, self.max_failed_attempts - status.failed_attempts)
