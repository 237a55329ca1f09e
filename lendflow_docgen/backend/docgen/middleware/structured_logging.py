# backend/docgen/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("docgen.request")

# ids the routers take from the path, surfaced so request lines join pipeline logs
_PATH_IDS = ("project_id", "document_id")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    One "http_request" record per request through the JSON formatter:
    method, path, status_code, latency_ms, org_slug and, when routed, the
    project or document id. 5xx responses log at WARNING.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            extra: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": int((time.perf_counter() - t0) * 1000),
                "org_slug": request.headers.get(settings.dev_header_org_slug),
            }
            # routing fills path_params on the shared scope
            params = request.scope.get("path_params") or {}
            for k in _PATH_IDS:
                if k in params:
                    extra[k] = params[k]
            log.log(logging.WARNING if status_code >= 500 else logging.INFO, "http_request", extra=extra)
