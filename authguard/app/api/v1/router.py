# authguard/app/api/v1/router.py
from fastapi import APIRouter
from authguard.app.api.v1.endpoints import api_keys, security, sessions, two_factor

api_router = APIRouter()
api_router.include_router(two_factor.router, prefix="/2fa", tags=["2fa"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(security.router, prefix="/security", tags=["security"])
api_router.include_router(api_keys.router, prefix="/api-keys", tags=["api-keys"])
