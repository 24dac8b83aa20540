"""
Rate limiting middleware for FastAPI
Uses slowapi with in-process storage
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, status
from fastapi.responses import JSONResponse

from portal.config import settings
from portal.utils.auth import decode_access_token


def get_rate_limit_key(request: Request) -> str:
    """
    Get rate limit key based on the consultant's token or IP address
    Prioritizes authenticated consultants for better rate limiting
    """
    authorization = request.headers.get("authorization", "")
    token = authorization[7:] if authorization.lower().startswith("bearer ") else request.cookies.get("access_token")
    if token:
        payload = decode_access_token(token)
        if payload and payload.get("sub"):
            return f"rate_limit:consultant:{payload['sub']}"

    # Fallback to IP address
    return f"rate_limit:ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_rate_limit_key,
    storage_uri="memory://",
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute", f"{settings.RATE_LIMIT_PER_HOUR}/hour"],
    headers_enabled=True,  # Include rate limit headers in response
    retry_after="x-ratelimit-retry-after"
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """
    Custom handler for rate limit exceeded errors
    """
    response = JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Rate limit exceeded",
            "message": f"Too many requests. Limit: {exc.detail}",
        }
    )
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)
