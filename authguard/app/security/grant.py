# authguard/app/security/grant.py
"""
"2FA satisfied" grant tokens.

A grant is a short-lived signed JWT bound to:
- the account (sub)
- the session it was earned in (sid), so it cannot leak across sessions
- a fingerprint of the current TOTP secret (cfp), so disabling or
  re-provisioning 2FA invalidates every outstanding grant
"""
import logging
from datetime import timedelta
from typing import Optional

from jose import JWTError

from authguard.app.security import jwt
from authguard.app.security.crypto import constant_time_compare, fingerprint

logger = logging.getLogger(__name__)

GRANT_TYPE = "2fa"
GRANT_TTL = timedelta(minutes=30)


def issue_grant(
    account_id: str,
    session_id: Optional[str],
    secret: str,
    ttl: timedelta = GRANT_TTL,
) -> str:
    return jwt.create_access_token(
        {
            "sub": account_id,
            "sid": session_id or "",
            "cfp": fingerprint(secret),
            "typ": GRANT_TYPE,
        },
        expires_delta=ttl,
    )


def verify_grant(
    token: Optional[str],
    account_id: str,
    session_id: Optional[str],
    secret: str,
) -> bool:
    if not token:
        return False
    try:
        claims = jwt.decode_token(token)
    except JWTError:
        logger.debug("Rejected malformed or expired 2FA grant")
        return False

    return (
        claims.get("typ") == GRANT_TYPE
        and claims.get("sub") == account_id
        and constant_time_compare(claims.get("sid", ""), session_id or "")
        and constant_time_compare(claims.get("cfp", ""), fingerprint(secret))
    )
