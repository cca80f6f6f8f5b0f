"""Per-client request rate limiting (slowapi)."""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from fixit.core.config import Environment, get_settings
from fixit.core.errors import error_envelope

logger = logging.getLogger(__name__)

settings = get_settings()


def default_limit() -> str:
    return f"{settings.rate_limit_max_requests}/{settings.rate_limit_window_minutes} minutes"


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[default_limit()],
    enabled=settings.environment != Environment.TEST,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"[RATE_LIMIT] {get_remote_address(request)} exceeded {exc.detail} on {request.url.path}")
    return error_envelope(
        request,
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many requests, please try again later",
    )
