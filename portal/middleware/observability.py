from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from portal.core.metrics import request_metrics
from portal.core.request_context import close_request_context, open_request_context
from portal.deps import client_ip

logger = logging.getLogger(__name__)
REQUEST_ID_HEADER = "X-Request-ID"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs its completion."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = open_request_context(request_id=request_id, client_ip=client_ip(request))
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            # the route is only known once routing has run
            route = request.scope.get("route")
            endpoint = getattr(route, "path", None) or request.url.path
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            request_metrics.observe(
                endpoint=endpoint, method=request.method, status_code=status_code, duration_ms=duration_ms
            )
            logger.info(
                "request completed",
                extra={
                    "endpoint": endpoint,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )
            close_request_context(token)
