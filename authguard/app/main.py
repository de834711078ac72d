# authguard/app/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from starlette.middleware.cors import CORSMiddleware

from authguard.app.api.v1.router import api_router
from authguard.app.core.config import DEV_SECRET_KEY, Settings, settings as default_settings
from authguard.app.core.errors import SecurityDenied
from authguard.app.core.logging import configure_logging
from authguard.app.db import init_models
from authguard.app.db.base import AsyncSessionLocal, build_sessionmaker, engine as default_engine
from authguard.app.middleware.security import CSRFCookieMiddleware, SecurityHeadersMiddleware
from authguard.app.services.container import build_services

logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[AsyncEngine] = None,
    sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API application.

    Passing an engine without a sessionmaker binds a fresh sessionmaker to
    it; passing neither uses the module-level engine from settings.
    """
    cfg = settings or default_settings
    db_engine = engine or default_engine
    if sessionmaker is None:
        sessionmaker = build_sessionmaker(engine) if engine is not None else AsyncSessionLocal

    # Tables are created when the server starts
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.LOG_LEVEL)
        if cfg.is_production and cfg.SECRET_KEY == DEV_SECRET_KEY:
            raise RuntimeError("SECRET_KEY must be set in production")
        await init_models(db_engine)
        logger.info("%s started (environment=%s)", cfg.PROJECT_NAME, cfg.ENVIRONMENT)
        yield
        await app.state.services.flush_audit()

    app = FastAPI(
        title=cfg.PROJECT_NAME,
        version=cfg.PROJECT_VERSION,
        openapi_url=f"{cfg.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = build_services(sessionmaker, settings=cfg)

    @app.exception_handler(SecurityDenied)
    async def security_denied_handler(request: Request, exc: SecurityDenied):
        decision = exc.decision
        return JSONResponse(
            status_code=decision.status,
            content=decision.body,
            headers=decision.headers or None,
        )

    app.add_middleware(CSRFCookieMiddleware, cookie_name=cfg.CSRF_COOKIE_NAME, secure=True)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=True)

    if cfg.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cfg.BACKEND_CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(api_router, prefix=cfg.API_V1_STR)

    @app.get("/")
    def root():
        return {"message": f"Welcome to {cfg.PROJECT_NAME} API"}

    return app


app = create_app()
