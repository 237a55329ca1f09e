# backend/docgen/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# caller-supplied ids end up in every log line; anything else is replaced
_ACCEPTABLE_ID = re.compile(r"^[A-Za-z0-9._:\-]{8,128}$")

_request_id: ContextVar[Optional[str]] = ContextVar("docgen_request_id", default=None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def resolve_request_id(incoming: Optional[str]) -> str:
    rid = (incoming or "").strip()
    return rid if _ACCEPTABLE_ID.match(rid) else uuid.uuid4().hex


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware. Adopts the caller's X-Request-ID when it is a sane
    token, mints one otherwise, and echoes it on the response. The id is
    visible to the JSON log formatter and to StructuredLoggingMiddleware
    through request.state.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid
        token = _request_id.set(rid)
        try:
            response = await call_next(request)
        finally:
            _request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
