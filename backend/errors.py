"""API error taxonomy.

Domain services raise these; server.py renders them into the
{success, message, error} envelope with the matching status code.
"""
from typing import Any, Optional


class ApiError(Exception):
    """Base exception for errors surfaced to API clients."""
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class BadRequestError(ApiError):
    """Missing or invalid input."""
    status_code = 400
    code = "bad_request"


class UnauthorizedError(ApiError):
    """Missing, invalid or expired credentials."""
    status_code = 401
    code = "unauthorized"


class ForbiddenError(ApiError):
    """Authenticated but lacking permission."""
    status_code = 403
    code = "forbidden"


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"


class ConflictError(ApiError):
    """Write lost a race against a concurrent update."""
    status_code = 409
    code = "conflict"


class RateLimitedError(ApiError):
    status_code = 429
    code = "rate_limited"


class InternalError(ApiError):
    """Unexpected failure, including external service failures."""
    status_code = 500
    code = "internal_error"