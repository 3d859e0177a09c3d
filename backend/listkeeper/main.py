"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import DBAPIError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from listkeeper.api import router as api_router
from listkeeper.config import get_settings
from listkeeper.db.session import async_session_factory, close_db, init_db, is_contention_error
from listkeeper.exceptions import ConflictError, ForbiddenError, ListkeeperError
from listkeeper.logging_setup import setup_logging
from listkeeper.middleware.logging import RequestContextMiddleware
from listkeeper.services.user_service import UserService

logger = structlog.get_logger()
settings = get_settings()

STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "INVALID_INPUT": 422,
    "CONFLICT": 409,
    "UNSUPPORTED": 501,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    setup_logging(settings.log_level, json_logs=settings.log_json)
    logger.info(
        "app_starting",
        version=settings.app_version,
        list_ordering=settings.feature_list_ordering,
        list_expanded_state=settings.feature_list_expanded_state,
    )
    await init_db()

    if settings.default_admin_password is not None:
        async with async_session_factory() as db:
            await UserService(db).ensure_default_admin(
                settings.default_admin_password.get_secret_value(),
                username=settings.default_admin_username,
            )

    yield

    # Shutdown
    logger.info("app_stopping")
    await close_db()
    logger.info("database_closed")


async def listkeeper_error_handler(request: Request, exc: ListkeeperError) -> ORJSONResponse:
    """Render service-layer failures as `{"ok": false, "code", "error"}`."""
    status_code = STATUS_BY_CODE.get(exc.code, 400)
    code = exc.code
    message = exc.message

    # A list the caller holds no grant on is indistinguishable from a missing one
    if isinstance(exc, ForbiddenError) and exc.reason == "no_grant":
        status_code, code = 404, "NOT_FOUND"
    if code == "NOT_FOUND":
        message = "Not found"

    return ORJSONResponse(
        status_code=status_code,
        content={"ok": False, "code": code, "error": message},
    )


async def store_error_handler(request: Request, exc: DBAPIError) -> ORJSONResponse:
    """Report a busy store outside a service transaction as a conflict."""
    if not is_contention_error(exc):
        raise exc
    logger.warning("store_contention", operation=request.url.path)
    return await listkeeper_error_handler(request, ConflictError(request.url.path))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Shared task lists with recurring tasks",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Add middleware (order matters - last added is first executed)
    app.add_middleware(RequestContextMiddleware)
    # Trust proxy headers (X-Forwarded-Proto, X-Forwarded-For) from the fronting proxy
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    app.add_exception_handler(ListkeeperError, listkeeper_error_handler)
    app.add_exception_handler(DBAPIError, store_error_handler)

    # Include API router
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for load balancers."""
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
