"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and context, and feeds the request
metrics.
"""
import time
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from pyra_engine.routes.metrics import track_request

logger = structlog.get_logger()


def _endpoint(request: Request) -> str:
    # Route template (/webhooks/{webhook_id}) keeps metric label cardinality bounded
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: actor, route, method, duration_ms, status to every log.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        request_logger = logger.bind(
            actor=request.headers.get("x-pyra-user"),
            route=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            track_request(request.method, _endpoint(request), 500, duration)
            request_logger.error(
                "request_failed",
                status_code=500,
                duration_ms=round(duration * 1000, 2),
                error=str(e)
            )
            raise

        duration = time.time() - start_time
        track_request(request.method, _endpoint(request), response.status_code, duration)

        if request.url.path != "/metrics":
            request_logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )

        return response
