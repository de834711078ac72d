# authguard/app/models/access.py
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from authguard.app.db.base import Base


class IPBlock(Base):
    __tablename__ = "ip_blacklist"

    id = Column(Integer, primary_key=True, index=True)
    ip_address = Column(String(45), unique=True, index=True, nullable=False)
    reason = Column(String(255), nullable=True)

    # NULL means the block never expires
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Subscription(Base):
    """
    Read-only view of billing state, used for entitlement checks only.
    Rows are written by the payment integration, not by this service.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), index=True, nullable=False)
    # active | trial | cancelled | expired | past_due
    status = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
