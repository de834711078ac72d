# authguard/app/schemas/two_factor.py
"""
Pydantic schemas for the two-factor and session endpoints.

The TOTP secret only ever appears in TwoFactorSetupResponse, once.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TwoFactorSetupResponse(BaseModel):
    secret: str
    backup_codes: List[str]
    otpauth_url: str


class TwoFactorCodeRequest(BaseModel):
    """6-digit TOTP code, or 8-char backup code for /verify-backup."""
    code: str = Field(..., max_length=32)


class TwoFactorVerifyResponse(BaseModel):
    ok: bool
    valid: bool
    grant: Optional[str] = None
    attempts_remaining: Optional[int] = None
    backup_codes_remaining: Optional[int] = None


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    backup_codes_remaining: int = 0


class OkResponse(BaseModel):
    ok: bool = True


class SessionResponse(BaseModel):
    # Fingerprint of the token; the token itself is never returned
    session_id: str
    device_info: Dict[str, Any]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    current: bool = False


class TouchResponse(BaseModel):
    updated: int


class SecurityStatusResponse(BaseModel):
    account_id: str
    two_factor_enabled: bool
    active_sessions: int
    failed_attempts: int
