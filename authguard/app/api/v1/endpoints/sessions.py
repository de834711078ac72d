# authguard/app/api/v1/endpoints/sessions.py
"""
Endpoints over the caller's own sessions.

Sessions are addressed by a fingerprint of their token; the token itself
never leaves the server through this API.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from authguard.app.api import deps
from authguard.app.schemas.security import Principal
from authguard.app.schemas.two_factor import OkResponse, SessionResponse, TouchResponse
from authguard.app.security.crypto import constant_time_compare, fingerprint
from authguard.app.services.container import SecurityServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[SessionResponse])
async def list_sessions(
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    records = await services.sessions.list_active(current_user.id)
    return [
        SessionResponse(
            session_id=fingerprint(record.session_token),
            device_info=record.device_info,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            created_at=record.created_at,
            last_activity_at=record.last_activity_at,
            expires_at=record.expires_at,
            current=current_user.session_id is not None
            and constant_time_compare(record.session_token, current_user.session_id),
        )
        for record in records
    ]


@router.post("/touch", response_model=TouchResponse)
async def touch_session(
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """Mark the current session (or all sessions, for session-less tokens) as active now."""
    updated = await services.sessions.touch_activity(current_user.id, current_user.session_id)
    return TouchResponse(updated=updated)


@router.delete("/{session_id}", response_model=OkResponse)
async def terminate_session(
    session_id: str,
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    # Only the caller's own sessions are searched
    for record in await services.sessions.list_active(current_user.id):
        if constant_time_compare(fingerprint(record.session_token), session_id):
            await services.sessions.terminate_session(record.session_token)
            logger.info("Session terminated by account %s", current_user.id)
            return OkResponse()

    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
