# authguard/app/services/identity.py
import logging
from typing import Optional

from jose import JWTError
from pydantic import BaseModel, ValidationError

from authguard.app.schemas.security import InboundRequest, Principal
from authguard.app.security import jwt
from authguard.app.security.api_keys import ApiKeyManager
from authguard.app.security.grant import GRANT_TYPE
from authguard.app.security.input_validation import validate_email
from authguard.app.security.sessions import SessionRegistry

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    sub: str
    sid: Optional[str] = None
    email: Optional[str] = None
    typ: str = "access"


class JWTIdentityProvider:
    """
    Resolves the caller from a bearer access token.

    Accounts and passwords live in the external identity service; this
    only trusts tokens signed with SECRET_KEY. `sid` carries the session
    token so grants and session activity can be bound to it.

    With a session registry attached, a token whose `sid` is terminated,
    expired, idle or owned by another account does not authenticate.
    Each accepted request counts as activity on its session.

    Callers without a token may present an API key instead; the key's
    owner becomes the principal, with no session and the key's permissions.
    """

    def __init__(
        self,
        cookie_name: str = "access_token",
        sessions: Optional[SessionRegistry] = None,
        api_keys: Optional[ApiKeyManager] = None,
        api_key_header: str = "X-API-Key",
    ):
        self.cookie_name = cookie_name
        self.sessions = sessions
        self.api_keys = api_keys
        self.api_key_header = api_key_header

    async def get_current_user(self, request: InboundRequest) -> Optional[Principal]:
        token = self._extract_token(request)
        if not token:
            return await self._from_api_key(request)
        try:
            token_data = TokenPayload(**jwt.decode_token(token))
        except (JWTError, ValidationError):
            return None

        # A 2FA grant is signed with the same key but is not an access token
        if token_data.typ == GRANT_TYPE:
            return None

        if token_data.sid and self.sessions is not None:
            if not await self._session_is_live(token_data.sub, token_data.sid):
                return None

        email = token_data.email if validate_email(token_data.email) else None
        return Principal(id=token_data.sub, email=email, session_id=token_data.sid)

    async def record_successful_login(self, account_id: str, ip: Optional[str]) -> None:
        logger.info("Successful login for account %s from %s", account_id, ip)

    async def record_failed_login(self, identifier: str, ip: Optional[str]) -> None:
        logger.warning("Failed login for %s from %s", identifier, ip)

    async def _from_api_key(self, request: InboundRequest) -> Optional[Principal]:
        api_key = request.header(self.api_key_header)
        if not api_key or self.api_keys is None:
            return None

        validation = await self.api_keys.validate_api_key(api_key)
        if not validation.valid:
            logger.info("Rejected API key: %s", validation.reason)
            return None
        return Principal(
            id=validation.account_id,
            api_key_id=validation.key_id,
            permissions=validation.permissions,
        )

    async def _session_is_live(self, account_id: str, session_token: str) -> bool:
        validation = await self.sessions.validate_session(session_token)
        if not validation.valid:
            logger.info("Rejected token for account %s: session %s", account_id, validation.reason)
            return False
        if validation.account_id != account_id:
            logger.warning("Rejected token for account %s: session belongs to another account", account_id)
            return False

        await self.sessions.touch_activity(account_id, session_token)
        return True

    def _extract_token(self, request: InboundRequest) -> Optional[str]:
        authorization = request.header("authorization") or ""
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return request.cookies.get(self.cookie_name)
