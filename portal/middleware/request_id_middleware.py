"""
Request ID Middleware for log tracing.

Each request gets an ID (the incoming X-Request-ID header, or a new UUID4)
that is stored in contextvars for every log line written while handling it,
and returned in the X-Request-ID response header.

Usage in main.py:
    from portal.middleware.request_id_middleware import RequestIdMiddleware
    app.add_middleware(RequestIdMiddleware)  # Add LAST so it runs FIRST
"""

import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from portal.utils.structured_logger import set_request_id, clear_request_id, get_logger

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For and X-Real-IP from a proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ID and logs its completion"""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)
        request.state.request_id = request_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "client_ip": get_client_ip(request),
                }
            )
            return response
        except Exception as e:
            logger.error(
                "Request failed with exception",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "error_type": type(e).__name__,
                },
                exc_info=True
            )
            raise
        finally:
            clear_request_id()
