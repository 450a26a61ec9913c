"""Request timing and tracing middleware for the quote engine API."""
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("quote-engine.middleware")

SKIP_LOG_PATHS = {"/health"}


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    - Reuses the caller's X-Request-ID, or assigns a uuid4, on every response.
    - Adds X-Process-Time (ms) to every response.
    - Emits a structured log line for every request (except /health).
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.perf_counter()

        # Route handlers use this as the quote_id on pipeline log lines
        request.state.request_id = request_id

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path not in SKIP_LOG_PATHS:
            logger.info(
                "request completed",
                extra={
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": response.status_code,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                },
            )

        return response
