"""Structured logging with per-request trace IDs."""
import structlog
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import time


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for JSON output; DEBUG level when debug is on."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False
    )


configure_logging()

logger = structlog.get_logger()

# Logged at debug level only
QUIET_PATHS = frozenset({"/health"})


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a trace ID to every request and logs its outcome.

    Reuses an incoming X-Trace-ID (the enrolment system forwards its own)
    or generates one, so every service log line for the request carries it.
    Domain errors are rendered by the app's exception handler and show up
    here as completed requests with their 4xx/5xx status.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
        request.state.trace_id = trace_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            method=request.method,
            path=request.url.path
        )

        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            "request_started",
            client_ip=request.client.host if request.client else None
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.perf_counter() - start_time) * 1000)
            )
            raise

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        if response.status_code >= 500:
            log = logger.error
        log("request_completed", status_code=response.status_code, latency_ms=latency_ms)

        response.headers["X-Trace-ID"] = trace_id
        return response


def get_logger():
    """Get configured structured logger."""
    return logger
