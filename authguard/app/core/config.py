# authguard/app/core/config.py
"""
Production-ready configuration using pydantic-settings.

Security considerations:
- No hardcoded secrets in production (SECRET_KEY must be set via env)
- CORS_ORIGINS parsed from comma-separated env var, never defaults to "*"
- Database URLs normalized for async drivers automatically
- Lockout / session / rate-limit policy values live here, not in code
"""
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEV_SECRET_KEY = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"


def _split_csv(value: str) -> List[str]:
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Strictly typed application settings.

    Priority for loading:
    1. Environment variables (highest priority)
    2. .env file (via pydantic-settings)
    3. Default values (lowest priority, dev-safe only)
    """

    # ─────────────────────────────────────────────────────────────
    # Application metadata
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "AuthGuard"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Security: JWT Configuration
    # SECRET_KEY signs both access tokens and 2FA grant tokens
    # ─────────────────────────────────────────────────────────────
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ─────────────────────────────────────────────────────────────
    # Two-factor authentication
    # ─────────────────────────────────────────────────────────────
    TOTP_ISSUER: str = "AuthGuard"
    # Accepted clock skew in 30s steps on each side of "now"
    TOTP_TOLERANCE_STEPS: int = 1
    BACKUP_CODE_COUNT: int = 8
    # Lifetime of the "2FA satisfied" grant
    TWO_FACTOR_GRANT_MINUTES: int = 30
    TWO_FACTOR_GRANT_COOKIE: str = "two_factor_grant"
    TWO_FACTOR_GRANT_HEADER: str = "X-2FA-Grant"
    TWO_FACTOR_CODE_HEADER: str = "X-2FA-Code"

    # ─────────────────────────────────────────────────────────────
    # Account lockout
    # ─────────────────────────────────────────────────────────────
    MAX_FAILED_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15

    # ─────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────
    MAX_CONCURRENT_SESSIONS: int = 5
    SESSION_TTL_HOURS: int = 24
    SESSION_IDLE_TIMEOUT_MINUTES: int = 30

    # ─────────────────────────────────────────────────────────────
    # API keys (stored as an HMAC with SECRET_KEY as the pepper)
    # ─────────────────────────────────────────────────────────────
    API_KEY_HEADER: str = "X-API-Key"

    # ─────────────────────────────────────────────────────────────
    # Request validation / collaborators
    # ─────────────────────────────────────────────────────────────
    MAX_BODY_BYTES: int = 1024 * 1024
    # Upper bound for any store / entitlement / audit call made by the gate
    COLLABORATOR_TIMEOUT_SECONDS: float = 2.0
    # Honour X-Forwarded-For / X-Real-IP / CF-Connecting-IP for client IP
    TRUST_PROXY_HEADERS: bool = True

    # ─────────────────────────────────────────────────────────────
    # CSRF (double-submit cookie)
    # ─────────────────────────────────────────────────────────────
    CSRF_COOKIE_NAME: str = "csrf_token"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"
    CSRF_EXEMPT_PATHS: str = "/webhook,/checkout/initialize,/payment/process"

    @property
    def csrf_exempt_paths(self) -> List[str]:
        return _split_csv(self.CSRF_EXEMPT_PATHS)

    # ─────────────────────────────────────────────────────────────
    # Database Configuration
    # Priority: DATABASE_URL env var → SQLite fallback for local dev
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./authguard.db"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """
        Normalize database URLs for async SQLAlchemy compatibility.

        Conversions:
        - postgres://     → postgresql+asyncpg://
        - postgresql://   → postgresql+asyncpg://
        - sqlite:///      → sqlite+aiosqlite:///
        """
        if v is None:
            return "sqlite+aiosqlite:///./authguard.db"

        url = v.strip()

        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)

        if url.startswith("postgresql://") and "+asyncpg" not in url:
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)

        if url.startswith("sqlite:///") and "+aiosqlite" not in url:
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

        return url

    # MUST be False in production to prevent SQL query exposure
    DATABASE_ECHO: bool = False

    # ─────────────────────────────────────────────────────────────
    # CORS Configuration
    # Empty string → empty list (NOT "*" for security)
    # ─────────────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        """Parse CORS_ORIGINS string into a list of allowed origins."""
        return _split_csv(self.CORS_ORIGINS)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # Extra fields in .env are ignored (prevents config injection)
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance.

    Using lru_cache ensures settings are only loaded once,
    providing consistent configuration across the application.
    """
    return Settings()


settings = get_settings()
