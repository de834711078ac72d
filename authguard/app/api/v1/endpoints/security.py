# authguard/app/api/v1/endpoints/security.py
from fastapi import APIRouter, Depends

from authguard.app.api import deps
from authguard.app.schemas.security import Principal
from authguard.app.schemas.two_factor import OkResponse, SecurityStatusResponse
from authguard.app.services.container import SecurityServices

router = APIRouter()


@router.get("/status", response_model=SecurityStatusResponse)
async def security_status(
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """Summary of the caller's account protection."""
    credential = await services.credentials.get(current_user.id)
    lockout = await services.lockout.check_lockout(current_user.id)
    return SecurityStatusResponse(
        account_id=current_user.id,
        two_factor_enabled=bool(credential and credential.enabled),
        active_sessions=await services.sessions.count_active(current_user.id),
        failed_attempts=lockout.failed_attempts,
    )


@router.get("/ping", response_model=OkResponse)
async def high_security_ping(
    current_user: Principal = Depends(deps.require_security("high_security")),
):
    # Reachable only with subscription + satisfied 2FA
    return OkResponse()
