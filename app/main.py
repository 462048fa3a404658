from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.modules.billing.domain.billing.runtime import build_billing_runtime
from app.shared.core.app_routes import register_api_routers, register_lifecycle_routes
from app.shared.core.config import get_settings, reload_settings_from_environment
from app.shared.core.error_governance import handle_exception
from app.shared.core.exceptions import ConfigurationError, MenuraiException
from app.shared.core.http import close_http_client, init_http_client
from app.shared.core.logging import setup_logging
from app.shared.core.middleware import RequestIDMiddleware
from app.shared.db.session import create_schema, get_engine

setup_logging()
settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()

    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)

    await init_http_client()

    if not settings.is_production:
        # Production schema is managed by alembic migrations.
        await create_schema()

    try:
        app.state.billing_runtime = build_billing_runtime(settings)
    except ConfigurationError as exc:
        if settings.is_production:
            raise
        app.state.billing_runtime = None
        logger.warning("billing_runtime_not_configured", error=exc.message)

    yield

    logger.info("app_shutting_down")

    # Close HTTP pool first (prevents new gateway calls while shutting down)
    await close_http_client()

    await get_engine().dispose()
    logger.info("db_engine_disposed")


menurai_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)
app: FastAPI = menurai_app

__all__ = ["app", "menurai_app", "lifespan"]


@menurai_app.exception_handler(MenuraiException)
async def menurai_exception_handler(
    request: Request, exc: MenuraiException
) -> JSONResponse:
    """Handle custom application exceptions."""
    return handle_exception(request, exc)


@menurai_app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render framework HTTP errors in the same envelope as application errors."""
    from uuid import uuid4

    codes = {401: "unauthenticated", 404: "not_found", 405: "invalid_argument"}
    code = codes.get(exc.status_code, "internal" if exc.status_code >= 500 else "invalid_argument")
    detail_text = str(exc.detail) if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": code,
            "message": "An unexpected internal error occurred" if code == "internal" else detail_text,
            "error_id": str(uuid4()),
        },
    )


@menurai_app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies are invalid arguments."""
    from uuid import uuid4

    logger.info("request_validation_failed", path=request.url.path)
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_argument",
            "message": "The request body or parameters are invalid.",
            "error_id": str(uuid4()),
        },
    )


@menurai_app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled exceptions are logged with an error_id and returned sanitized."""
    return handle_exception(request, exc)


register_lifecycle_routes(
    menurai_app,
    app_name=settings.APP_NAME,
    version=settings.VERSION,
)

# Middleware is processed in REVERSE order of addition; CORS goes last.
menurai_app.add_middleware(RequestIDMiddleware)

if settings.CORS_ORIGINS and "*" in settings.CORS_ORIGINS:
    logger.error("insecure_cors_config_detected", msg="allow_credentials=True with '*' origin is forbidden")
    cors_allowed_origins = [o for o in settings.CORS_ORIGINS if o != "*"]
else:
    cors_allowed_origins = settings.CORS_ORIGINS

menurai_app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

register_api_routers(menurai_app)
