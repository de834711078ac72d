# authguard/app/schemas/security.py
"""
Typed records exchanged between the security core and its stores.

All timestamps are timezone-aware UTC. SQLite hands back naive datetimes,
so every datetime field is normalized on the way in.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

Severity = Literal["low", "medium", "high", "critical"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return ensure_aware(v)
        return v


# ─────────────────────────────────────────────────────────────────────────────
# Stored records
# ─────────────────────────────────────────────────────────────────────────────
class TOTPCredential(_Record):
    """One per account. `secret` is never logged and masked in repr."""
    account_id: str
    secret: str = Field(repr=False)
    backup_codes: List[str] = Field(default_factory=list)
    enabled: bool = False
    created_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None


class LockoutRecord(_Record):
    account_id: str
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_attempt_at: datetime
    origin_ip: Optional[str] = None


class SessionRecord(_Record):
    account_id: str
    session_token: str = Field(repr=False)
    device_info: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_active: bool = True
    terminated_at: Optional[datetime] = None


class ApiKeyRecord(_Record):
    id: Optional[int] = None
    account_id: str
    key_name: str
    key_prefix: str
    key_hash: str = Field(repr=False)
    permissions: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


class SecurityEvent(_Record):
    event_type: str
    severity: Severity = "low"
    account_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────────────────────────────────────
# Outcomes
# ─────────────────────────────────────────────────────────────────────────────
class LockoutStatus(BaseModel):
    locked: bool
    remaining_seconds: int = 0
    failed_attempts: int = 0


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0
    limit: int


class SessionValidation(BaseModel):
    valid: bool
    account_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None


class BlockStatus(_Record):
    blocked: bool
    expires_at: Optional[datetime] = None


class ApiKeyValidation(BaseModel):
    valid: bool
    account_id: Optional[str] = None
    key_id: Optional[int] = None
    permissions: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class Principal(BaseModel):
    """The authenticated caller as reported by the identity provider."""
    id: str
    email: Optional[str] = None
    session_id: Optional[str] = None
    # Set when the caller authenticated with an API key instead of a session
    api_key_id: Optional[int] = None
    permissions: List[str] = Field(default_factory=list)


class InboundRequest(BaseModel):
    """Framework-neutral view of an HTTP request, as seen by the gate."""
    method: str
    path: str
    client_ip: str = "unknown"
    headers: Dict[str, str] = Field(default_factory=dict)
    query_params: List[Tuple[str, str]] = Field(default_factory=list)
    cookies: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @field_validator("headers", mode="after")
    @classmethod
    def _lowercase_headers(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {key.lower(): value for key, value in v.items()}

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "unknown")


class GateDecision(BaseModel):
    allow: bool
    status: int = 200
    body: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    principal: Optional[Principal] = None

    @classmethod
    def allowed(cls, principal: Optional[Principal] = None) -> "GateDecision":
        return cls(allow=True, status=200, principal=principal)

    @classmethod
    def deny(
        cls,
        status: int,
        error: str,
        retry_after: Optional[int] = None,
        details: Optional[List[str]] = None,
        **extra: Any,
    ) -> "GateDecision":
        body: Dict[str, Any] = {"error": error}
        headers: Dict[str, str] = {}
        if retry_after is not None:
            body["retryAfter"] = retry_after
            headers["Retry-After"] = str(retry_after)
        if details:
            body["details"] = details
        body.update(extra)
        return cls(allow=False, status=status, body=body, headers=headers)
