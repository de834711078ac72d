# authguard/app/security/api_keys.py
"""
API keys for programmatic access.

Format: "ag_" + 43 URL-safe characters (32 random bytes).

The key is returned to its owner once, at creation. Storage holds an
HMAC-SHA256 of the key under a server-side pepper, so a leaked table
cannot be replayed and cannot be brute-forced offline without the pepper.

Validation answers with a value, never an exception: unknown, revoked
and expired keys all come back as an invalid ApiKeyValidation.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from authguard.app.schemas.security import ApiKeyRecord, ApiKeyValidation, utcnow
from authguard.app.security.crypto import compute_hmac_signature, generate_secure_token
from authguard.app.security.input_validation import sanitize_input
from authguard.app.security.interfaces import ApiKeyStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "ag_"
KEY_BYTES = 32
# Characters of the key kept in clear for listings
DISPLAY_PREFIX_LENGTH = 10

DEFAULT_EXPIRES_DAYS = 365
MAX_EXPIRES_DAYS = 3650
MAX_NAME_LENGTH = 100

PERMISSIONS = (
    "read:profile",
    "write:profile",
    "read:subscription",
    "write:subscription",
    "read:analytics",
    "write:analytics",
    "admin:users",
    "admin:system",
)


class ApiKeyError(ValueError):
    """Rejected key-creation request (bad name, scope or lifetime)."""


class ApiKeyManager:
    def __init__(
        self,
        store: ApiKeyStore,
        pepper: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.pepper = pepper
        self.clock = clock

    def hash_key(self, api_key: str) -> str:
        return compute_hmac_signature(api_key, self.pepper)

    async def generate_api_key(
        self,
        account_id: str,
        key_name: str,
        permissions: Iterable[str] = (),
        expires_days: Optional[int] = DEFAULT_EXPIRES_DAYS,
    ) -> Tuple[str, ApiKeyRecord]:
        """
        Create a key for the account.

        Returns the plaintext key (show it once, never store it) and the
        stored record. expires_days=None issues a key that never expires.
        """
        name = sanitize_input(key_name or "")
        if not name:
            raise ApiKeyError("Key name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ApiKeyError(f"Key name must be at most {MAX_NAME_LENGTH} characters")

        scopes = sorted(set(permissions))
        unknown = [scope for scope in scopes if scope not in PERMISSIONS]
        if unknown:
            raise ApiKeyError(f"Unknown permissions: {', '.join(unknown)}")

        if expires_days is not None and not 1 <= expires_days <= MAX_EXPIRES_DAYS:
            raise ApiKeyError(f"expires_days must be between 1 and {MAX_EXPIRES_DAYS}")

        now = self.clock()
        api_key = KEY_PREFIX + generate_secure_token(KEY_BYTES)
        record = await self.store.create(
            ApiKeyRecord(
                account_id=account_id,
                key_name=name,
                key_prefix=api_key[:DISPLAY_PREFIX_LENGTH],
                key_hash=self.hash_key(api_key),
                permissions=scopes,
                created_at=now,
                expires_at=now + timedelta(days=expires_days) if expires_days else None,
            )
        )
        logger.info("API key %s created for account %s", record.id, account_id)
        return api_key, record

    async def validate_api_key(self, api_key: Optional[str]) -> ApiKeyValidation:
        candidate = (api_key or "").strip()
        if not candidate.startswith(KEY_PREFIX):
            return ApiKeyValidation(valid=False, reason="malformed")

        record = await self.store.get_by_hash(self.hash_key(candidate))
        if record is None:
            return ApiKeyValidation(valid=False, reason="unknown")
        if not record.is_active:
            return ApiKeyValidation(valid=False, account_id=record.account_id, reason="revoked")

        now = self.clock()
        if record.expires_at is not None and now >= record.expires_at:
            return ApiKeyValidation(valid=False, account_id=record.account_id, reason="expired")

        await self.store.mark_used(record.id, now)
        return ApiKeyValidation(
            valid=True,
            account_id=record.account_id,
            key_id=record.id,
            permissions=record.permissions,
        )

    async def list_keys(self, account_id: str) -> List[ApiKeyRecord]:
        return await self.store.list_for_account(account_id)

    async def revoke(self, account_id: str, key_id: int) -> bool:
        revoked = await self.store.deactivate(account_id, key_id)
        if revoked:
            logger.info("API key %s revoked by account %s", key_id, account_id)
        return revoked
