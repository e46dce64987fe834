"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Any, Dict, Optional
import enum
import logging

logger = logging.getLogger(__name__)

class TrailheadException(HTTPException):
    """Base exception class for Trailhead application"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

class BadRequestException(TrailheadException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

class UnauthorizedException(TrailheadException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(TrailheadException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )

class NotFoundException(TrailheadException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )

class ConflictException(TrailheadException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )

class DuplicateResourceException(ConflictException):
    """Resource already exists"""

    def __init__(self, resource: str, field: str, value: str):
        super().__init__(
            detail=f"{resource} with {field} '{value}' already exists",
            error_code="DUPLICATE_RESOURCE"
        )

class PromoRejectionReason(str, enum.Enum):
    """Stable reason codes for promo code rejections"""

    # Eligibility
    INVALID_CODE = "INVALID_CODE"
    EXPIRED = "EXPIRED"
    GLOBAL_LIMIT_EXCEEDED = "GLOBAL_LIMIT_EXCEEDED"
    USER_LIMIT_EXCEEDED = "USER_LIMIT_EXCEEDED"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    EVENT_NOT_ELIGIBLE = "EVENT_NOT_ELIGIBLE"
    CATEGORY_NOT_ELIGIBLE = "CATEGORY_NOT_ELIGIBLE"
    EVENT_EXCLUDED = "EVENT_EXCLUDED"
    NOT_TARGETED = "NOT_TARGETED"

    # Booking state
    ALREADY_APPLIED = "ALREADY_APPLIED"
    NO_PROMO_APPLIED = "NO_PROMO_APPLIED"

    # Authorization / lookup
    UNAUTHORIZED = "UNAUTHORIZED"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"

REJECTION_MESSAGES: Dict[PromoRejectionReason, str] = {
    PromoRejectionReason.INVALID_CODE: "Invalid promo code",
    PromoRejectionReason.EXPIRED: "Promo code has expired or is not yet active",
    PromoRejectionReason.GLOBAL_LIMIT_EXCEEDED: "Promo code usage limit exceeded",
    PromoRejectionReason.USER_LIMIT_EXCEEDED: "You have exceeded the usage limit for this promo code",
    PromoRejectionReason.BELOW_MINIMUM: "Order amount is below the minimum required for this promo code",
    PromoRejectionReason.EVENT_NOT_ELIGIBLE: "This promo code is not applicable to the selected event",
    PromoRejectionReason.CATEGORY_NOT_ELIGIBLE: "This promo code is not applicable to this event category",
    PromoRejectionReason.EVENT_EXCLUDED: "This promo code cannot be used for the selected event",
    PromoRejectionReason.NOT_TARGETED: "This promo code is not available for your account",
    PromoRejectionReason.ALREADY_APPLIED: "A promo code has already been applied to this booking",
    PromoRejectionReason.NO_PROMO_APPLIED: "No promo code applied to this booking",
    PromoRejectionReason.UNAUTHORIZED: "Unauthorized to modify this booking",
    PromoRejectionReason.BOOKING_NOT_FOUND: "Booking not found",
    PromoRejectionReason.EVENT_NOT_FOUND: "Event not found",
}

_REJECTION_STATUS: Dict[PromoRejectionReason, int] = {
    PromoRejectionReason.NO_PROMO_APPLIED: status.HTTP_404_NOT_FOUND,
    PromoRejectionReason.BOOKING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PromoRejectionReason.EVENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PromoRejectionReason.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
}

class PromoRejection(TrailheadException):
    """A promo code request was refused for a business reason"""

    def __init__(self, reason: PromoRejectionReason, detail: Optional[str] = None):
        super().__init__(
            status_code=_REJECTION_STATUS.get(reason, status.HTTP_400_BAD_REQUEST),
            detail=detail or REJECTION_MESSAGES[reason],
            error_code=reason.value
        )
        self.reason = reason

def _error_response(status_code: int, message: str, code: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code},
        headers=headers
    )

async def trailhead_exception_handler(request: Request, exc: TrailheadException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        exc.detail,
        exc.error_code or "ERROR",
        headers=exc.headers
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        str(exc.detail),
        "HTTP_ERROR",
        headers=getattr(exc, "headers", None)
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg")
    else:
        message = "Invalid request"
    return _error_response(status.HTTP_400_BAD_REQUEST, message, "VALIDATION_ERROR")

async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "INTERNAL_ERROR"
    )

def register_exception_handlers(app: FastAPI) -> None:
    """Attach the JSON error handlers to ``app``"""
    app.add_exception_handler(TrailheadException, trailhead_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, unhandled_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
