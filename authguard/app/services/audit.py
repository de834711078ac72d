# authguard/app/services/audit.py
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.app.models.security_event import SecurityEventLog
from authguard.app.schemas.security import SecurityEvent

logger = logging.getLogger(__name__)

_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.WARNING,
    "critical": logging.ERROR,
}


class DatabaseAuditSink:
    """
    Writes security events to the security_events table and the log.

    Callers write through BackgroundAudit, which bounds each write with a
    timeout and logs its failures.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def log_event(self, event: SecurityEvent) -> None:
        logger.log(
            _LEVELS.get(event.severity, logging.INFO),
            "security_event type=%s severity=%s account=%s ip=%s",
            event.event_type, event.severity, event.account_id, event.ip_address,
        )
        async with self._sessionmaker() as db:
            db.add(SecurityEventLog(**event.model_dump()))
            await db.commit()
