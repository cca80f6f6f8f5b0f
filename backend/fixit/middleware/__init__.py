"""HTTP middleware for Fix It by Threalty."""

from fixit.middleware.request_id import RequestIDMiddleware, get_request_id

__all__ = ["RequestIDMiddleware", "get_request_id"]
