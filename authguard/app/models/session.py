# authguard/app/models/session.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Index

from authguard.app.db.base import Base


class UserSession(Base):
    __tablename__ = "user_sessions"
    __table_args__ = (
        Index("ix_user_sessions_account_active", "account_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), index=True, nullable=False)
    session_token = Column(String(128), unique=True, index=True, nullable=False)

    device_info = Column(JSON, nullable=False, default=dict)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    last_activity_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # At most MAX_CONCURRENT_SESSIONS active rows per account
    is_active = Column(Boolean, nullable=False, default=True)
    terminated_at = Column(DateTime(timezone=True), nullable=True)
