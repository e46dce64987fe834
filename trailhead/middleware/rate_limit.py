"""Rate limiting using slowapi"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
import logging

from trailhead.core.config import settings

logger = logging.getLogger(__name__)

def get_rate_limit_key(request: Request) -> str:
    """Get rate limit key based on user or IP"""
    # Set by the authentication dependency
    user_id = getattr(request.state, "user_id", None)

    if user_id:
        return f"user:{user_id}"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"

    return f"ip:{ip}"

limiter = Limiter(
    key_func=get_rate_limit_key,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED
)

# Validate and apply share one budget per caller
promo_limiter = limiter.shared_limit(settings.RATE_LIMIT_PROMO, scope="promo")

async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    logger.warning(
        "Rate limit exceeded for %s on %s", get_rate_limit_key(request), request.url.path
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": f"Too many requests. {exc.detail}",
            "code": "RATE_LIMIT_EXCEEDED"
        }
    )
