# authguard/app/security/totp.py
"""
TOTP (Time-based One-Time Password) implementation
RFC 6238 / RFC 4226 compliant - Compatible with Google Authenticator, Authy, Aegis

Key points:
- 6-digit codes
- 30-second time step
- HMAC-SHA1 (standard)
- Base32 secret encoding (unpadded)

Secrets pass through the permissive decoder in security/base32.py and are
re-encoded before pyotp sees them, so pasted secrets with spaces, dashes,
lowercase or padding still verify.

Verification never raises; malformed input simply fails to verify.
"""
import math
import secrets
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union
from urllib.parse import quote

import pyotp

from authguard.app.security import base32
from authguard.app.security.crypto import constant_time_compare

DIGITS = 6
PERIOD = 30
ALGORITHM = "SHA1"

# 160-bit secrets, as recommended by RFC 4226
SECRET_BYTES = 20
SECRET_LENGTH = 32

BACKUP_CODE_COUNT = 8
BACKUP_CODE_BYTES = 4

Timestamp = Union[datetime, int, float]


def _unix_seconds(at: Optional[Timestamp]) -> float:
    if at is None:
        return time.time()
    if isinstance(at, datetime):
        return at.timestamp()
    return float(at)


def _normalize_secret(secret: str) -> str:
    return base32.encode(base32.decode(secret))


def generate_secret() -> str:
    """
    Generate a new random TOTP secret (Base32 encoded, no padding).
    Returns 32-character Base32 string (20 random bytes).
    """
    return pyotp.random_base32(length=SECRET_LENGTH)


def counter_for(at: Optional[Timestamp] = None, period: int = PERIOD) -> int:
    """Time-step counter: floor(unix_seconds / period)."""
    return math.floor(_unix_seconds(at) / period)


def code_for_counter(secret: str, counter: int) -> str:
    """HOTP value for a counter (RFC 4226 section 5.3), zero-padded."""
    return pyotp.HOTP(_normalize_secret(secret), digits=DIGITS).at(counter)


def generate_code(secret: str, at: Optional[Timestamp] = None) -> str:
    """
    Get the TOTP code for a secret at a given time (default: now).
    Useful for testing only - never expose this in production!
    """
    return code_for_counter(secret, counter_for(at))


def verify_code(
    secret: str,
    code: str,
    tolerance: int = 1,
    at: Optional[Timestamp] = None,
) -> bool:
    """
    Verify a 6-digit TOTP code.

    Counters from now-tolerance to now+tolerance (inclusive) are accepted,
    which absorbs clock skew between server and the user's device.
    Returns True if valid, False otherwise.
    """
    if not secret or not isinstance(code, str) or not code:
        return False

    moment = datetime.fromtimestamp(int(_unix_seconds(at)), tz=timezone.utc)
    try:
        totp = pyotp.TOTP(_normalize_secret(secret), digits=DIGITS, interval=PERIOD)
        return totp.verify(code, for_time=moment, valid_window=tolerance)
    except (TypeError, ValueError):
        # pyotp refuses negative counters and non-ASCII codes
        return False


def generate_qr_uri(secret: str, account_label: str, issuer: str = "AuthGuard") -> str:
    """
    Generate the otpauth:// URI for QR code encoding.

    Format: otpauth://totp/{issuer}:{account}?secret=...&issuer=...
            &algorithm=SHA1&digits=6&period=30

    Authenticator apps scan this to add the account.
    """
    enc_issuer = quote(issuer, safe="")
    enc_account = quote(account_label, safe="")
    enc_secret = quote(secret, safe="")

    return (
        f"otpauth://totp/{enc_issuer}:{enc_account}"
        f"?secret={enc_secret}&issuer={enc_issuer}"
        f"&algorithm={ALGORITHM}&digits={DIGITS}&period={PERIOD}"
    )


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    """
    Generate single-use recovery codes: 4 random bytes as 8 uppercase hex chars.

    No uniqueness check across the batch; a collision among 8 codes drawn
    from 2**32 values is an accepted risk.
    """
    return [secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(count)]


def normalize_backup_code(code: str) -> str:
    return "".join(code.split()).upper()


def verify_backup_code(submitted: str, stored_codes: Iterable[str]) -> bool:
    """
    Case-insensitive, whitespace-insensitive match against stored codes.

    The caller removes the matched code from storage; single use is
    enforced there, not here.
    """
    if not isinstance(submitted, str) or not submitted.strip():
        return False

    candidate = normalize_backup_code(submitted)
    matched = False
    for stored in stored_codes:
        if constant_time_compare(candidate, stored):
            matched = True
    return matched
