# authguard/app/api/v1/endpoints/api_keys.py
"""
API endpoints for managing the caller's API keys.

Endpoints:
- POST   /api-keys          - Create a key (the plaintext is returned once)
- GET    /api-keys          - List the caller's keys, revoked ones included
- DELETE /api-keys/{key_id} - Revoke a key

Keys are managed from a signed-in session only: a request authenticated
by an API key cannot create, list or revoke keys.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from authguard.app.api import deps
from authguard.app.schemas.api_keys import ApiKeyCreateRequest, ApiKeyCreateResponse, ApiKeyResponse
from authguard.app.schemas.security import Principal
from authguard.app.schemas.two_factor import OkResponse
from authguard.app.security.api_keys import ApiKeyError
from authguard.app.services.container import SecurityServices

router = APIRouter()


def _require_session_caller(principal: Principal) -> None:
    if principal.api_key_id is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API keys cannot manage API keys"
        )


@router.post("", response_model=ApiKeyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: ApiKeyCreateRequest,
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    """
    Create an API key.

    Store the returned `api_key` now: only a hash is kept server-side and
    the key cannot be shown again.
    """
    _require_session_caller(current_user)
    try:
        api_key, record = await services.api_keys.generate_api_key(
            current_user.id,
            body.key_name,
            permissions=body.permissions,
            expires_days=body.expires_days,
        )
    except ApiKeyError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ApiKeyCreateResponse(api_key=api_key, key=ApiKeyResponse.model_validate(record))


@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys(
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    _require_session_caller(current_user)
    records = await services.api_keys.list_keys(current_user.id)
    return [ApiKeyResponse.model_validate(record) for record in records]


@router.delete("/{key_id}", response_model=OkResponse)
async def revoke_api_key(
    key_id: int,
    services: SecurityServices = Depends(deps.get_services),
    current_user: Principal = Depends(deps.get_current_principal),
):
    _require_session_caller(current_user)
    if not await services.api_keys.revoke(current_user.id, key_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    return OkResponse()
