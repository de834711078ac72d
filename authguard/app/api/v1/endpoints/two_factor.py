# authguard/app/api/v1/endpoints/two_factor.py
"""
API endpoints for TOTP two-factor authentication.

Endpoints:
- POST /2fa/setup         - Issue a secret + backup codes (credential stays disabled)
- POST /2fa/verify        - Verify a TOTP code; enables 2FA on first success
- POST /2fa/verify-backup - Spend one backup code
- POST /2fa/disable       - Remove the credential and any grant cookie
- GET  /2fa/status        - Whether 2FA is on and how many backup codes remain

Security:
- All endpoints require an authenticated caller (security gate)
- Wrong codes count toward account lockout
- A successful verification issues a 30-minute grant bound to the session
"""
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from authguard.app.api import deps
from authguard.app.schemas.security import Principal, TOTPCredential, utcnow
from authguard.app.schemas.two_factor import (
    OkResponse,
    TwoFactorCodeRequest,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyResponse,
)
from authguard.app.security import grant, totp
from authguard.app.services.container import SecurityServices

router = APIRouter()


def _set_grant_cookie(response: Response, services: SecurityServices, token: str) -> None:
    response.set_cookie(
        services.settings.TWO_FACTOR_GRANT_COOKIE,
        token,
        max_age=services.settings.TWO_FACTOR_GRANT_MINUTES * 60,
        path="/",
        httponly=True,
        secure=True,
        samesite="lax",
    )


def _issue_grant(services: SecurityServices, principal: Principal, credential: TOTPCredential) -> str:
    return grant.issue_grant(
        principal.id,
        principal.session_id,
        credential.secret,
        ttl=timedelta(minutes=services.settings.TWO_FACTOR_GRANT_MINUTES),
    )


@router.post("/setup", response_model=TwoFactorSetupResponse)
async def setup_two_factor(
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """
    Generate a new TOTP secret and backup codes for the caller.

    The credential is stored disabled until a code generated from the
    secret is verified via /verify. Re-running setup before that replaces
    the pending secret.
    """
    existing = await services.credentials.get(current_user.id)
    if existing and existing.enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Two-factor authentication is already enabled. Disable it first."
        )

    secret = totp.generate_secret()
    backup_codes = totp.generate_backup_codes(services.settings.BACKUP_CODE_COUNT)

    await services.credentials.upsert(
        TOTPCredential(
            account_id=current_user.id,
            secret=secret,
            backup_codes=backup_codes,
            enabled=False,
        )
    )

    return TwoFactorSetupResponse(
        secret=secret,
        backup_codes=backup_codes,
        otpauth_url=totp.generate_qr_uri(
            secret,
            current_user.email or current_user.id,
            issuer=services.settings.TOTP_ISSUER,
        ),
    )


@router.post("/verify", response_model=TwoFactorVerifyResponse)
async def verify_two_factor(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """
    Verify a 6-digit TOTP code.

    First success flips the credential to enabled. Every success clears
    failed attempts and sets the "2FA satisfied" grant cookie.
    """
    code = body.code.strip()
    if len(code) != totp.DIGITS or not code.isdigit():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    credential = await services.credentials.get(current_user.id)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA not initialized")

    if not totp.verify_code(credential.secret, code, tolerance=services.settings.TOTP_TOLERANCE_STEPS):
        lockout = await services.logins.on_failure(current_user.id, deps.client_ip(request, services.settings.TRUST_PROXY_HEADERS))
        return TwoFactorVerifyResponse(
            ok=False,
            valid=False,
            attempts_remaining=services.lockout.attempts_remaining(lockout),
        )

    if not credential.enabled:
        credential.enabled = True
        credential.verified_at = utcnow()
        credential = await services.credentials.upsert(credential)

    await services.lockout.clear_attempts(current_user.id)

    token = _issue_grant(services, current_user, credential)
    _set_grant_cookie(response, services, token)
    return TwoFactorVerifyResponse(ok=True, valid=True, grant=token)


@router.post("/verify-backup", response_model=TwoFactorVerifyResponse)
async def verify_backup_code(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """Spend one backup code. Each code works exactly once."""
    code = totp.normalize_backup_code(body.code)
    if len(code) != totp.BACKUP_CODE_BYTES * 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid backup code")

    credential = await services.credentials.get(current_user.id)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA not initialized")
    if not credential.enabled:
        # Backup codes only stand in for an authenticator that was set up
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="2FA not enabled")

    consumed = False
    if totp.verify_backup_code(code, credential.backup_codes):
        consumed = await services.credentials.consume_backup_code(current_user.id, code)

    if not consumed:
        lockout = await services.logins.on_failure(current_user.id, deps.client_ip(request, services.settings.TRUST_PROXY_HEADERS))
        return TwoFactorVerifyResponse(
            ok=False,
            valid=False,
            attempts_remaining=services.lockout.attempts_remaining(lockout),
        )

    await services.lockout.clear_attempts(current_user.id)
    remaining = await services.credentials.get(current_user.id)

    token = _issue_grant(services, current_user, credential)
    _set_grant_cookie(response, services, token)
    return TwoFactorVerifyResponse(
        ok=True,
        valid=True,
        grant=token,
        backup_codes_remaining=len(remaining.backup_codes) if remaining else 0,
    )


@router.post("/disable", response_model=OkResponse)
async def disable_two_factor(
    response: Response,
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """
    Delete the credential. Outstanding grants stop verifying because they
    are bound to the deleted secret; the grant cookie is cleared as well.
    """
    await services.credentials.delete(current_user.id)
    response.delete_cookie(services.settings.TWO_FACTOR_GRANT_COOKIE, path="/")
    return OkResponse()


@router.get("/status", response_model=TwoFactorStatusResponse)
async def two_factor_status(
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    credential = await services.credentials.get(current_user.id)
    if credential is None:
        return TwoFactorStatusResponse(enabled=False)
    return TwoFactorStatusResponse(
        enabled=credential.enabled,
        backup_codes_remaining=len(credential.backup_codes),
    )
