# authguard/app/security/interfaces.py
"""
Collaborator interfaces consumed by the security core.

The core never talks to a database directly; it is handed objects that
satisfy these protocols. "Not found" is a meaningful answer (None), not
an error. Unreachable collaborators raise CollaboratorError.
"""
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from authguard.app.schemas.security import (
    ApiKeyRecord,
    BlockStatus,
    InboundRequest,
    LockoutRecord,
    Principal,
    SecurityEvent,
    SessionRecord,
    TOTPCredential,
)


class IdentityProvider(Protocol):
    async def get_current_user(self, request: InboundRequest) -> Optional[Principal]: ...

    async def record_successful_login(self, account_id: str, ip: Optional[str]) -> None: ...

    async def record_failed_login(self, identifier: str, ip: Optional[str]) -> None: ...


class CredentialStore(Protocol):
    async def get(self, account_id: str) -> Optional[TOTPCredential]: ...

    async def upsert(self, credential: TOTPCredential) -> TOTPCredential: ...

    async def delete(self, account_id: str) -> bool: ...

    async def consume_backup_code(self, account_id: str, code: str) -> bool:
        """Atomically remove `code` from the stored set; False if absent."""
        ...


class LockoutStore(Protocol):
    async def get(self, account_id: str) -> Optional[LockoutRecord]: ...

    async def increment(
        self,
        account_id: str,
        ip: Optional[str],
        now: datetime,
        threshold: int,
        locked_until: datetime,
    ) -> LockoutRecord:
        """
        Atomically add one failure. When the new count reaches `threshold`
        and no lock is set yet, the record's locked_until becomes `locked_until`.
        """
        ...

    async def delete(self, account_id: str) -> None: ...


class SessionStore(Protocol):
    async def create(self, record: SessionRecord) -> SessionRecord: ...

    async def get(self, session_token: str) -> Optional[SessionRecord]: ...

    async def list_active(self, account_id: str) -> List[SessionRecord]:
        """Active sessions, most recently active first."""
        ...

    async def deactivate_beyond(self, account_id: str, keep: int, now: datetime) -> int:
        """Deactivate every active session except the `keep` most recent."""
        ...

    async def deactivate(self, session_tokens: Sequence[str], now: datetime) -> int: ...

    async def touch(self, account_id: str, now: datetime, session_token: Optional[str] = None) -> int: ...


class ApiKeyStore(Protocol):
    async def create(self, record: ApiKeyRecord) -> ApiKeyRecord: ...

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKeyRecord]: ...

    async def list_for_account(self, account_id: str) -> List[ApiKeyRecord]:
        """Every key of the account, revoked ones included, newest first."""
        ...

    async def deactivate(self, account_id: str, key_id: int) -> bool:
        """Revoke one of the account's own active keys; False if none matched."""
        ...

    async def mark_used(self, key_id: int, now: datetime) -> None: ...


class EntitlementChecker(Protocol):
    async def has_active_subscription(self, account_id: str) -> bool: ...


class AuditSink(Protocol):
    async def log_event(self, event: SecurityEvent) -> None: ...


class IPBlocklist(Protocol):
    async def is_blocked(self, ip: str) -> BlockStatus: ...
