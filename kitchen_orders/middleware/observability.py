from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from kitchen_orders.core.metrics import request_metrics
from kitchen_orders.core.request_context import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

ROUTE_LOG_FIELDS = ("order_id", "ingredient")


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_context(request_id=request_id)

        status_code = 500
        endpoint = request.url.path
        method = request.method
        response = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            request_metrics.observe(endpoint=endpoint, method=method, status_code=status_code, duration_ms=duration_ms)

            extra = {
                "request_id": request_id,
                "endpoint": endpoint,
                "method": method,
                "status_code": status_code,
                "duration_ms": duration_ms,
            }
            # path params só existem depois do roteamento
            path_params = request.scope.get("path_params") or {}
            for field in ROUTE_LOG_FIELDS:
                if path_params.get(field):
                    extra[field] = path_params[field]
            logger.info("request completed", extra=extra)

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            clear_request_context()
