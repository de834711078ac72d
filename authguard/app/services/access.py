# authguard/app/services/access.py
"""IP blocklist and subscription entitlement lookups."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.app.models.access import IPBlock, Subscription
from authguard.app.schemas.security import BlockStatus, ensure_aware, utcnow

logger = logging.getLogger(__name__)

ENTITLED_STATUSES = ("active", "trial")


class SQLIPBlocklist:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def is_blocked(self, ip: str) -> BlockStatus:
        async with self._sessionmaker() as db:
            result = await db.execute(select(IPBlock).where(IPBlock.ip_address == ip))
            block = result.scalars().first()

        if block is None:
            return BlockStatus(blocked=False)

        expires_at = ensure_aware(block.expires_at)
        if expires_at is not None and expires_at <= utcnow():
            return BlockStatus(blocked=False, expires_at=expires_at)
        return BlockStatus(blocked=True, expires_at=expires_at)

    async def block(self, ip: str, reason: Optional[str] = None, expires_at: Optional[datetime] = None) -> None:
        async with self._sessionmaker() as db:
            result = await db.execute(select(IPBlock).where(IPBlock.ip_address == ip))
            block = result.scalars().first() or IPBlock(ip_address=ip)
            block.reason = reason
            block.expires_at = expires_at
            db.add(block)
            await db.commit()
        logger.warning("IP %s blocked (%s)", ip, reason or "no reason given")

    async def unblock(self, ip: str) -> None:
        async with self._sessionmaker() as db:
            await db.execute(delete(IPBlock).where(IPBlock.ip_address == ip))
            await db.commit()


class SQLSubscriptionEntitlement:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def has_active_subscription(self, account_id: str) -> bool:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(Subscription.id)
                .where(
                    Subscription.account_id == account_id,
                    Subscription.status.in_(ENTITLED_STATUSES),
                )
                .limit(1)
            )
            return result.first() is not None
