# authguard/app/services/stores.py
"""
SQLAlchemy implementations of the security core's record stores.

Each operation opens its own short transaction from the session factory.
Counter updates are done in SQL (failed_attempts + 1) rather than
read-then-write so concurrent failures are never under-counted.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authguard.app.models.api_key import ApiKey
from authguard.app.models.lockout import AccountLockout
from authguard.app.models.session import UserSession
from authguard.app.models.two_factor import TwoFactorCredential
from authguard.app.schemas.security import ApiKeyRecord, LockoutRecord, SessionRecord, TOTPCredential

logger = logging.getLogger(__name__)


class SQLCredentialStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def get(self, account_id: str) -> Optional[TOTPCredential]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(TwoFactorCredential).where(TwoFactorCredential.account_id == account_id)
            )
            row = result.scalars().first()
            return TOTPCredential.model_validate(row) if row else None

    async def upsert(self, credential: TOTPCredential) -> TOTPCredential:
        for attempt in range(2):
            try:
                async with self._sessionmaker() as db:
                    result = await db.execute(
                        select(TwoFactorCredential).where(
                            TwoFactorCredential.account_id == credential.account_id
                        )
                    )
                    row = result.scalars().first()
                    if row is None:
                        row = TwoFactorCredential(account_id=credential.account_id)
                        db.add(row)

                    row.secret = credential.secret
                    row.backup_codes = list(credential.backup_codes)
                    row.enabled = credential.enabled
                    row.verified_at = credential.verified_at

                    await db.commit()
                    await db.refresh(row)
                    return TOTPCredential.model_validate(row)
            except IntegrityError:
                # A concurrent setup inserted the row first; retry as an update
                if attempt:
                    raise
        raise RuntimeError("unreachable")

    async def delete(self, account_id: str) -> bool:
        async with self._sessionmaker() as db:
            result = await db.execute(
                delete(TwoFactorCredential).where(TwoFactorCredential.account_id == account_id)
            )
            await db.commit()
            return result.rowcount > 0

    async def consume_backup_code(self, account_id: str, code: str) -> bool:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(TwoFactorCredential)
                .where(TwoFactorCredential.account_id == account_id)
                .with_for_update()
            )
            row = result.scalars().first()
            if row is None or code not in (row.backup_codes or []):
                await db.rollback()
                return False

            row.backup_codes = [c for c in row.backup_codes if c != code]
            await db.commit()
            return True


class SQLLockoutStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def get(self, account_id: str) -> Optional[LockoutRecord]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(AccountLockout).where(AccountLockout.account_id == account_id)
            )
            row = result.scalars().first()
            return LockoutRecord.model_validate(row) if row else None

    async def increment(
        self,
        account_id: str,
        ip: Optional[str],
        now: datetime,
        threshold: int,
        locked_until: datetime,
    ) -> LockoutRecord:
        for attempt in range(2):
            try:
                return await self._increment(account_id, ip, now, threshold, locked_until)
            except IntegrityError:
                # Lost the race to create the first record; the retry updates it
                if attempt:
                    raise
        raise RuntimeError("unreachable")

    async def _increment(
        self,
        account_id: str,
        ip: Optional[str],
        now: datetime,
        threshold: int,
        locked_until: datetime,
    ) -> LockoutRecord:
        async with self._sessionmaker() as db:
            result = await db.execute(
                update(AccountLockout)
                .where(AccountLockout.account_id == account_id)
                .values(
                    failed_attempts=AccountLockout.failed_attempts + 1,
                    last_attempt_at=now,
                    origin_ip=ip,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.add(
                    AccountLockout(
                        account_id=account_id,
                        failed_attempts=1,
                        last_attempt_at=now,
                        origin_ip=ip,
                    )
                )
                await db.flush()

            await db.execute(
                update(AccountLockout)
                .where(
                    AccountLockout.account_id == account_id,
                    AccountLockout.failed_attempts >= threshold,
                    # An active lock keeps its original expiry
                    AccountLockout.locked_until.is_(None),
                )
                .values(locked_until=locked_until)
                .execution_options(synchronize_session=False)
            )

            result = await db.execute(
                select(AccountLockout)
                .where(AccountLockout.account_id == account_id)
                .execution_options(populate_existing=True)
            )
            row = result.scalars().one()
            record = LockoutRecord.model_validate(row)
            await db.commit()
            return record

    async def delete(self, account_id: str) -> None:
        async with self._sessionmaker() as db:
            await db.execute(delete(AccountLockout).where(AccountLockout.account_id == account_id))
            await db.commit()


class SQLSessionStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def create(self, record: SessionRecord) -> SessionRecord:
        async with self._sessionmaker() as db:
            row = UserSession(**record.model_dump())
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return SessionRecord.model_validate(row)

    async def get(self, session_token: str) -> Optional[SessionRecord]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(UserSession).where(UserSession.session_token == session_token)
            )
            row = result.scalars().first()
            return SessionRecord.model_validate(row) if row else None

    async def list_active(self, account_id: str) -> List[SessionRecord]:
        async with self._sessionmaker() as db:
            result = await db.execute(self._active_query(account_id))
            return [SessionRecord.model_validate(row) for row in result.scalars().all()]

    async def deactivate_beyond(self, account_id: str, keep: int, now: datetime) -> int:
        async with self._sessionmaker() as db:
            result = await db.execute(self._active_query(account_id).with_for_update())
            sessions = result.scalars().all()
            excess = sessions[max(0, keep):]
            for row in excess:
                row.is_active = False
                row.terminated_at = now
            await db.commit()
            return len(excess)

    async def deactivate(self, session_tokens: Sequence[str], now: datetime) -> int:
        if not session_tokens:
            return 0
        async with self._sessionmaker() as db:
            result = await db.execute(
                update(UserSession)
                .where(
                    UserSession.session_token.in_(list(session_tokens)),
                    UserSession.is_active.is_(True),
                )
                .values(is_active=False, terminated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount

    async def touch(self, account_id: str, now: datetime, session_token: Optional[str] = None) -> int:
        stmt = update(UserSession).where(
            UserSession.account_id == account_id,
            UserSession.is_active.is_(True),
        )
        if session_token is not None:
            stmt = stmt.where(UserSession.session_token == session_token)

        async with self._sessionmaker() as db:
            result = await db.execute(
                stmt.values(last_activity_at=now).execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount

    @staticmethod
    def _active_query(account_id: str):
        # Most recently active first; newer rows win ties
        return (
            select(UserSession)
            .where(UserSession.account_id == account_id, UserSession.is_active.is_(True))
            .order_by(UserSession.last_activity_at.desc(), UserSession.id.desc())
        )


class SQLApiKeyStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def create(self, record: ApiKeyRecord) -> ApiKeyRecord:
        async with self._sessionmaker() as db:
            row = ApiKey(**record.model_dump(exclude={"id"}))
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return ApiKeyRecord.model_validate(row)

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKeyRecord]:
        async with self._sessionmaker() as db:
            result = await db.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
            row = result.scalars().first()
            return ApiKeyRecord.model_validate(row) if row else None

    async def list_for_account(self, account_id: str) -> List[ApiKeyRecord]:
        async with self._sessionmaker() as db:
            result = await db.execute(
                select(ApiKey)
                .where(ApiKey.account_id == account_id)
                .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
            )
            return [ApiKeyRecord.model_validate(row) for row in result.scalars().all()]

    async def deactivate(self, account_id: str, key_id: int) -> bool:
        async with self._sessionmaker() as db:
            result = await db.execute(
                update(ApiKey)
                .where(
                    ApiKey.id == key_id,
                    ApiKey.account_id == account_id,
                    ApiKey.is_active.is_(True),
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount > 0

    async def mark_used(self, key_id: int, now: datetime) -> None:
        async with self._sessionmaker() as db:
            await db.execute(
                update(ApiKey)
                .where(ApiKey.id == key_id)
                .values(last_used_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
