# authguard/app/models/api_key.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON

from authguard.app.db.base import Base


class ApiKey(Base):
    """
    Long-lived key for programmatic access.

    Only a keyed hash of the key is stored; the key itself is shown to
    its owner once, at creation.
    """
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), index=True, nullable=False)
    key_name = Column(String(100), nullable=False)

    # Leading characters of the key, so owners can tell keys apart
    key_prefix = Column(String(16), nullable=False)
    key_hash = Column(String(64), unique=True, index=True, nullable=False)

    permissions = Column(JSON, nullable=False, default=list)

    # Revocation flips this; rows are kept for the audit trail
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    # NULL means the key never expires
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
