# src/identity_service/main.py
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings, load_settings
from .infrastructure.database import create_engine, create_session_factory, init_db
from .middleware.logging import RequestIdMiddleware
from .routers.auth_router import router as auth_router
from .routers.user_router import router as user_router
from .UAA.exceptions import EntropyUnavailable, StoreFailure
from .UAA.services import IdentityService
from .UAA.utils import build_password_context

logger = structlog.get_logger()


def configure_structlog(level: str = "INFO"):
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
    )


async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request_failed", kind=type(exc).__name__, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def create_app(settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    settings = settings or load_settings()
    owns_engine = engine is None
    if engine is None:
        engine = create_engine(settings.database_url, echo=settings.database_echo)

    service = IdentityService(
        create_session_factory(engine),
        settings.secret_key,
        timedelta(minutes=settings.access_token_expire_minutes),
        token_leeway=settings.token_leeway_seconds,
        otp_length=settings.otp_length,
        otp_validity_minutes=settings.otp_validity_minutes,
        pwd_context=build_password_context(settings.bcrypt_rounds),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        logger.info("app_startup", environment=settings.environment)
        yield
        if owns_engine:
            await engine.dispose()
        logger.info("app_shutdown")

    app = FastAPI(title="Identity Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.identity_service = service

    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(StoreFailure, _internal_error)
    app.add_exception_handler(EntropyUnavailable, _internal_error)

    app.include_router(auth_router)
    app.include_router(user_router)
    return app


def run():
    settings = load_settings()
    configure_structlog(settings.log_level)
    uvicorn.run(
        "identity_service.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()
