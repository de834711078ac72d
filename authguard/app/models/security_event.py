# authguard/app/models/security_event.py
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from authguard.app.db.base import Base


class SecurityEventLog(Base):
    """Append-only audit trail written by the audit sink."""
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), index=True, nullable=True)

    event_type = Column(String(64), index=True, nullable=False)
    # low | medium | high | critical
    severity = Column(String(16), nullable=False, default="low")
    details = Column(JSON, nullable=False, default=dict)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
