# authguard/app/db/__init__.py
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


async def init_models(engine: Optional[AsyncEngine] = None, drop_existing: bool = False) -> None:
    """
    Create every table registered on Base.metadata.

    drop_existing=True resets the schema first (tests / local dev only).
    """
    # Imported here: db.base imports db.session, which needs this package loaded first
    from authguard.app.db.base import Base, engine as default_engine
    from authguard.app.models import access, api_key, lockout, security_event, session, two_factor  # noqa: F401

    target = engine or default_engine
    try:
        async with target.begin() as conn:
            if drop_existing:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise
