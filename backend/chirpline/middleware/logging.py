"""
Chirpline Backend — Request Logging Middleware
================================================

What:  One access-log line per request: method, path, status, duration,
       response size, request ID and client IP.
How:   Times the downstream call with perf_counter and picks the log level
       from the status class (5xx ERROR, 4xx WARNING, otherwise INFO).
Who:   Logger "chirpline.access"; the structured fields are also attached
       as `extra` for handlers that emit JSON.

Bodies, cookies and Authorization headers are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from chirpline.middleware.request_id import request_id_var

logger = logging.getLogger("chirpline.access")


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access logging for every route, static files included."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        fields = {
            "request_id": request_id_var.get(""),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
            # Streamed responses (static files) may not declare a length
            "bytes": response.headers.get("content-length", "-"),
            "client_ip": request.client.host if request.client else "unknown",
        }
        logger.log(
            level_for_status(response.status_code),
            "%(method)s %(path)s → %(status)d in %(duration_ms).1fms, %(bytes)s bytes "
            "[%(request_id)s] %(client_ip)s",
            fields,
            extra=fields,
        )
        return response
