import time
import uuid

from fastapi import Request
import structlog
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

# Polled by the load balancer and the scheduler; not worth a log line each
UNLOGGED_PATHS = ("/health",)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tag every log line of a request with its id and log the outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, path=request.url.path, method=request.method
        )
        if request.url.path.startswith("/internal/jobs/"):
            structlog.contextvars.bind_contextvars(job=request.url.path.rsplit("/", 1)[-1])

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        response.headers["X-Request-ID"] = request_id
        if request.url.path not in UNLOGGED_PATHS:
            logger.info(
                "request_completed",
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
            )
        return response
