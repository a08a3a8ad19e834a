import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

log = structlog.get_logger()

class LoggingMiddleware(BaseHTTPMiddleware):
    """One structured log line per request, tagged with a fresh request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        request.state.request_id = request_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception(
                "http_request_failed",
                elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(e)
            )
            raise

        log.info(
            "http_request",
            status_code=response.status_code,
            elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2)
        )
        response.headers["X-Request-ID"] = request_id
        return response
