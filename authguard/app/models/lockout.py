# authguard/app/models/lockout.py
from sqlalchemy import Column, Integer, String, DateTime

from authguard.app.db.base import Base


class AccountLockout(Base):
    """
    Failed-attempt counter per account.

    Created on the first failure, deleted on success or once
    locked_until has passed (lazily, on the next check).
    """
    __tablename__ = "account_lockouts"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(64), unique=True, index=True, nullable=False)

    failed_attempts = Column(Integer, nullable=False, default=0)

    # Only set once failed_attempts reaches the threshold
    locked_until = Column(DateTime(timezone=True), nullable=True)

    last_attempt_at = Column(DateTime(timezone=True), nullable=False)

    # Kept for forensics; counting is per account, not per IP
    origin_ip = Column(String(45), nullable=True)
