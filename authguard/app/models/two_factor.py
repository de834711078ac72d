# authguard/app/models/two_factor.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from authguard.app.db.base import Base


class TwoFactorCredential(Base):
    """
    TOTP credential, one row per account.

    `secret` is the Base32 shared key. It is never logged and never
    returned by any endpoint after setup.
    """
    __tablename__ = "two_factor_auth"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), unique=True, index=True, nullable=False)

    secret = Column(String(64), nullable=False)

    # List of 8-char uppercase hex codes; one is removed per use
    backup_codes = Column(JSON, nullable=False, default=list)

    # False while setup is in progress (secret issued but never verified)
    enabled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    verified_at = Column(DateTime(timezone=True), nullable=True)
