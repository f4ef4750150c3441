"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from firesession.api.v1.router import api_router
from firesession.config import settings
from firesession.core.exceptions import AppException
from firesession.core.firebase import FirebaseIdentityProvider, initialize_firebase
from firesession.core.redis_client import check_redis_connection, create_redis_client
from firesession.database import Database
from firesession.dependencies import build_services
from firesession.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from firesession.middleware.logging import LoggingMiddleware, configure_logging

configure_logging(settings)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds the database, Redis client and lifecycle managers once, and
    tears them down on shutdown.
    """
    logger.info("application_startup", environment=settings.environment)

    firebase_app = None
    try:
        firebase_app = initialize_firebase(
            settings.firebase_credentials_path, settings.firebase_config_json
        )
        logger.info("firebase_initialized")
    except Exception as e:
        logger.warning(
            "firebase_initialization_failed",
            error=str(e),
            note="Firebase auth will not work. Set FIREBASE_CONFIG_JSON or FIREBASE_CREDENTIALS_PATH.",
        )

    database = Database.from_settings(settings)
    if await database.check_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")

    redis_client = create_redis_client(settings)
    if check_redis_connection(redis_client):
        logger.info("redis_connected")
    else:
        logger.error("redis_connection_failed")

    identity_provider = FirebaseIdentityProvider(
        firebase_app,
        timeout_seconds=settings.upstream_timeout_seconds,
        check_revoked=settings.firebase_check_revoked,
    )
    app.state.services = build_services(settings, database, redis_client, identity_provider)

    yield

    logger.info("application_shutdown")

    await database.dispose()
    logger.info("database_connections_closed")

    redis_client.close()
    logger.info("redis_connection_closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Server-side sessions on top of Firebase Authentication",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LoggingMiddleware, cookie_name=settings.session_cookie_name)

app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

app.include_router(api_router, prefix=settings.api_v1_prefix)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """
    Root endpoint.

    Returns:
        Welcome message
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "firesession.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
