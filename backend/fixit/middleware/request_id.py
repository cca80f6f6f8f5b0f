"""Per-request correlation id."""

import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

HEADER = "X-Request-ID"


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagates X-Request-ID (or a fresh UUID4) through logs and error envelopes."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(HEADER) or request.headers.get("X-Request-Id") or str(uuid.uuid4())

        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
            response.headers[HEADER] = rid
            return response
        finally:
            request_id_ctx.reset(token)
