# ============================================================================
# File: api/middleware.py
# ============================================================================

import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
LATENCY_HEADER = "X-API-Latency-ms"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id and reports its latency.

    The id comes from the caller's X-Request-ID when present, so a
    connect callback can be traced through job logs end to end.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or f"req_{uuid.uuid4().hex[:12]}"
        started = time.perf_counter()

        response = await call_next(request)

        latency_ms = int((time.perf_counter() - started) * 1000)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        response.headers[LATENCY_HEADER] = str(latency_ms)

        log = logger.warning if response.status_code >= 500 else logger.debug
        log(f"[{request.state.request_id}] {request.method} {request.url.path} -> {response.status_code} in {latency_ms}ms")
        return response
