"""
Rate limiting using slowapi.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from app.config import settings
from app.core.exceptions import ErrorCode
from app.core.logging_utils import get_request_id, sanitize_log_message

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get client IP address from request.
    Handles X-Forwarded-For header for proxied requests.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain (original client)
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi's RateLimitExceeded in the standard error envelope."""
    logger.warning(
        sanitize_log_message(
            "Rate limit exceeded",
            RequestID=get_request_id(request),
            Path=request.url.path,
            Limit=str(exc.detail)
        )
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.RATE_LIMITED.value,
                "message": f"Too many requests: {exc.detail}"
            }
        }
    )


def setup_rate_limiting(app: FastAPI) -> None:
    """
    Configure rate limiting for the FastAPI application.

    The limiter is always attached to app.state because the per-route
    decorators look it up there even when limiting is switched off.
    """
    app.state.limiter = limiter

    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting is disabled")
        return

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    logger.info(
        f"Rate limiting enabled: default={settings.RATE_LIMIT_DEFAULT}, "
        f"auth={settings.RATE_LIMIT_AUTH}, uploads={settings.RATE_LIMIT_UPLOADS}"
    )


def rate_limit_auth():
    """Rate limit decorator for register/login."""
    return limiter.limit(settings.RATE_LIMIT_AUTH)


def rate_limit_uploads():
    """Rate limit decorator for document uploads."""
    return limiter.limit(settings.RATE_LIMIT_UPLOADS)
