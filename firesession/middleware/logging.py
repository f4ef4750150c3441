"""Logging middleware and configuration."""

import logging
import re
import sys
import time
import uuid
from collections.abc import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from firesession.config import Settings
from firesession.dependencies import client_ip

logger = structlog.get_logger(__name__)

_REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]{1,64}")


def configure_logging(settings: Settings) -> None:
    """Configure structured logging."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging with per-request context.

    A request id, method and path are bound to structlog's contextvars, so
    every event logged while the request is handled carries them. Only the
    kinds of credential presented are logged, never their values.
    """

    def __init__(self, app: ASGIApp, cookie_name: str = "app_session"):
        """Initialize with the name of the session cookie."""
        super().__init__(app)
        self.cookie_name = cookie_name

    def _credential_kinds(self, request: Request) -> list[str]:
        kinds = []
        if request.cookies.get(self.cookie_name):
            kinds.append("session_cookie")
        if request.headers.get("authorization", "").startswith("Bearer "):
            kinds.append("bearer")
        return kinds

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """
        Log request and response details.

        Args:
            request: Request object
            call_next: Next middleware in chain

        Returns:
            Response object
        """
        incoming_id = request.headers.get("x-request-id", "")
        request_id = incoming_id if _REQUEST_ID_PATTERN.fullmatch(incoming_id) else uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        # Query strings are left out: reset links carry tokens
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start_time = time.perf_counter()

        logger.info(
            "request_started",
            client_ip=client_ip(request),
            credentials=self._credential_kinds(request),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start_time
        log = logger.warning if response.status_code in (401, 403) else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration)

        return response
