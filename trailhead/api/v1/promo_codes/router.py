"""
Promo code API routes
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime
import uuid
import logging

from trailhead.core.config import settings
from trailhead.core.database import get_db
from trailhead.core.exceptions import PromoRejection, PromoRejectionReason
from trailhead.core.security import get_current_user, is_admin, require_admin
from trailhead.middleware.rate_limit import promo_limiter
from trailhead.models import Event, EventCategory, PromoCodeType
from trailhead.services import CandidateOrder, DiscountQuote, PromoLedger
from .schemas import (
    ValidatePromoRequest,
    ValidatePromoResponse,
    ApplyPromoRequest,
    ApplyPromoResponse,
    RemovePromoRequest,
    RemovePromoResponse,
    PromoCodeCreate,
    PromoCodeUpdate,
    PromoCodeResponse,
    PromoCodeListResponse,
    PromoCodeMutationResponse,
    PromoCodeDeleteResponse,
    PromoCodeUsageListResponse,
    PromoAnalyticsResponse,
)
from .services import PromoCodeAdminService, PromoAnalyticsService

logger = logging.getLogger(__name__)

router = APIRouter()

def _breakdown(discount: DiscountQuote) -> dict:
    return {
        "original_amount": float(discount.original_amount),
        "discount_amount": float(discount.discount_amount),
        "final_amount": float(discount.final_amount),
        "savings": float(discount.savings),
    }

@router.post(
    "/validate",
    response_model=ValidatePromoResponse,
    summary="Validate promo code",
    description="Check a promo code against an event and amount without applying it"
)
@promo_limiter
async def validate_promo_code(
    request: Request,
    data: ValidatePromoRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Preview the discount a promo code would give"""
    event = await db.get(Event, data.event_id)
    if event is None:
        raise PromoRejection(PromoRejectionReason.EVENT_NOT_FOUND)

    # Only admins may check a code on behalf of another user
    user_id = current_user["id"]
    if data.user_id and is_admin(current_user):
        user_id = data.user_id

    order = CandidateOrder(
        original_amount=data.amount,
        user_id=user_id,
        event_id=str(event.id),
        event_category=event.category.value if event.category else None,
        booking_id=str(data.booking_id) if data.booking_id else None,
    )

    ledger = PromoLedger(db)
    discount = await ledger.validate(data.code, order)
    promo = await ledger.catalog.find_by_code(data.code)

    return ValidatePromoResponse(
        promo_code={
            "id": promo.id,
            "code": promo.code,
            "description": promo.description,
            "type": promo.type,
            "value": float(promo.value),
        },
        discount=_breakdown(discount),
    )

@router.post(
    "/apply",
    response_model=ApplyPromoResponse,
    summary="Apply promo code",
    description="Apply a promo code to a booking"
)
@promo_limiter
async def apply_promo_code(
    request: Request,
    data: ApplyPromoRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Apply promo code to booking"""
    ledger = PromoLedger(db)
    discount = await ledger.apply(
        code=data.code,
        booking_id=data.booking_id,
        original_amount=data.original_amount,
        identity=current_user,
    )

    return ApplyPromoResponse(
        discount=_breakdown(discount),
        promo_code={"code": discount.code, "description": discount.description},
    )

@router.delete(
    "/apply",
    response_model=RemovePromoResponse,
    summary="Remove promo code",
    description="Remove the promo code applied to a booking"
)
async def remove_promo_code(
    data: RemovePromoRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Remove promo code from booking"""
    ledger = PromoLedger(db)
    await ledger.remove(booking_id=data.booking_id, identity=current_user)
    return RemovePromoResponse()

# Admin endpoints

@router.get(
    "/",
    response_model=PromoCodeListResponse,
    summary="List promo codes",
    description="Get paginated promo codes with usage stats (admin only)"
)
async def list_promo_codes(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    search: Optional[str] = None,
    type: Optional[PromoCodeType] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    is_public: Optional[bool] = Query(None, alias="isPublic"),
    category: Optional[EventCategory] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List promo codes"""
    service = PromoCodeAdminService(db)
    result = await service.list_promo_codes(
        page=page,
        limit=limit,
        search=search,
        type=type,
        is_active=is_active,
        is_public=is_public,
        category=category,
        sort_by=sort_by,
        sort_order=sort_order
    )
    return PromoCodeListResponse(**result)

@router.post(
    "/",
    response_model=PromoCodeMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create promo code",
    description="Create a new promo code (admin only)"
)
async def create_promo_code(
    request: Request,
    data: PromoCodeCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create promo code"""
    service = PromoCodeAdminService(db)
    promo = await service.create_promo_code(data, admin=current_user, request=request)
    return PromoCodeMutationResponse(
        message="Promo code created successfully",
        promo_code=PromoCodeResponse.model_validate(promo),
    )

@router.get(
    "/analytics",
    response_model=PromoAnalyticsResponse,
    summary="Promo code analytics",
    description="Usage, discount and revenue figures over a period (admin only)"
)
async def get_promo_analytics(
    period: Optional[int] = Query(None, ge=1, le=365, description="Period in days"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    promo_code_id: Optional[uuid.UUID] = Query(None, alias="promoCodeId"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Get promo code analytics"""
    service = PromoAnalyticsService(db)
    result = await service.get_analytics(
        period_days=period,
        start_date=start_date,
        end_date=end_date,
        promo_code_id=promo_code_id
    )
    return PromoAnalyticsResponse(**result)

@router.get(
    "/{promo_code_id}",
    response_model=PromoCodeResponse,
    summary="Get promo code",
    description="Get a promo code by ID (admin only)"
)
async def get_promo_code(
    promo_code_id: uuid.UUID,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Get promo code by ID"""
    service = PromoCodeAdminService(db)
    promo = await service.get_promo_code(promo_code_id)
    return PromoCodeResponse.model_validate(promo)

@router.patch(
    "/{promo_code_id}",
    response_model=PromoCodeMutationResponse,
    summary="Update promo code",
    description="Partially update a promo code (admin only)"
)
async def update_promo_code(
    request: Request,
    promo_code_id: uuid.UUID,
    data: PromoCodeUpdate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update promo code"""
    service = PromoCodeAdminService(db)
    promo = await service.update_promo_code(
        promo_code_id, data, admin=current_user, request=request
    )
    return PromoCodeMutationResponse(
        message="Promo code updated successfully",
        promo_code=PromoCodeResponse.model_validate(promo),
    )

@router.delete(
    "/{promo_code_id}",
    response_model=PromoCodeDeleteResponse,
    summary="Delete promo code",
    description="Delete a promo code, or retire it when it has usage history (admin only)"
)
async def delete_promo_code(
    request: Request,
    promo_code_id: uuid.UUID,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete or retire promo code"""
    service = PromoCodeAdminService(db)
    retired = await service.delete_promo_code(promo_code_id, admin=current_user, request=request)

    if retired is not None:
        return PromoCodeDeleteResponse(
            message="Promo code has usage history and was retired",
            retired=True,
            promo_code=PromoCodeResponse.model_validate(retired),
        )
    return PromoCodeDeleteResponse(message="Promo code deleted successfully", retired=False)

@router.get(
    "/{promo_code_id}/usages",
    response_model=PromoCodeUsageListResponse,
    summary="Promo code usage history",
    description="Get paginated usage records of a promo code (admin only)"
)
async def list_promo_code_usages(
    promo_code_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List usage records of a promo code"""
    service = PromoCodeAdminService(db)
    result = await service.list_usages(promo_code_id, page=page, size=limit)
    return PromoCodeUsageListResponse(**result)
