"""
Tourkit — Access Logging Middleware
=====================================

What:  One log line per request: method, path, status, duration, request ID.
How:   Level follows the status (5xx ERROR, 4xx WARNING, otherwise INFO) so
       failed uploads and planner outages stand out. Structured fields go in
       `extra` for handlers that emit JSON.

Request bodies are never logged: uploads carry photos and the Authorization
header carries the user's storage token.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from tourkit.middleware.request_id import request_id_var

logger = logging.getLogger("tourkit.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each HTTP request with its outcome and latency.

    Typical durations:
        - GET /health: 1-5ms
        - POST /api/geocode: ~1.1s per stop (provider throttle)
        - POST /api/routes/sequence: 1-10s (planner call dominates)
        - POST /api/uploads: seconds to minutes depending on size and retries
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        # Probes hit this every few seconds
        if path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        method = request.method
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
