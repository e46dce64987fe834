"""
Promo code schemas for request/response validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import re
import uuid

from trailhead.models import EventCategory, PromoCodeStatus, PromoCodeType
from trailhead.utils.helpers import ensure_utc

CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")

class CamelModel(BaseModel):
    """Base schema: camelCase on the wire, snake_case accepted on input"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

def _normalize_code(value: str) -> str:
    value = (value or "").strip().upper()
    if not CODE_PATTERN.match(value):
        raise ValueError("Code must be 3-20 uppercase letters or digits")
    return value

# Ledger requests / responses

class ValidatePromoRequest(CamelModel):
    """Preview a promo code for an event"""
    code: str = Field(..., min_length=1, max_length=50)
    event_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    user_id: Optional[str] = Field(None, max_length=64)
    booking_id: Optional[uuid.UUID] = None

class ApplyPromoRequest(CamelModel):
    """Apply a promo code to a booking"""
    code: str = Field(..., min_length=1, max_length=50)
    booking_id: uuid.UUID
    original_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)

class RemovePromoRequest(CamelModel):
    """Remove the promo code applied to a booking"""
    booking_id: uuid.UUID

class DiscountBreakdown(CamelModel):
    original_amount: float
    discount_amount: float
    final_amount: float
    savings: float

class AppliedPromoCode(CamelModel):
    code: str
    description: str

class PromoCodePreview(AppliedPromoCode):
    id: uuid.UUID
    type: PromoCodeType
    value: float

class ValidatePromoResponse(CamelModel):
    valid: bool = True
    promo_code: PromoCodePreview
    discount: DiscountBreakdown

class ApplyPromoResponse(CamelModel):
    success: bool = True
    message: str = "Promo code applied successfully"
    discount: DiscountBreakdown
    promo_code: AppliedPromoCode

class RemovePromoResponse(CamelModel):
    success: bool = True
    message: str = "Promo code removed successfully"

# Catalog administration

class PromoCodeCreate(CamelModel):
    """Schema for creating promo code"""
    code: str
    description: str = Field(..., min_length=1, max_length=500)
    type: PromoCodeType
    value: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    min_order_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: datetime
    valid_until: datetime
    applicable_events: List[uuid.UUID] = Field(default_factory=list)
    applicable_categories: List[EventCategory] = Field(default_factory=list)
    excluded_events: List[uuid.UUID] = Field(default_factory=list)
    is_active: bool = True
    is_public: bool = True
    target_users: List[str] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        return _normalize_code(v)

    @field_validator("valid_from", "valid_until")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_rules(self):
        if self.valid_until <= self.valid_from:
            raise ValueError("Valid until date must be after valid from date")
        if self.type == PromoCodeType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage value must be between 0 and 100")
        return self

class PromoCodeUpdate(CamelModel):
    """Schema for updating promo code; the usage counter is not editable"""
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    type: Optional[PromoCodeType] = None
    value: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    min_order_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    applicable_events: Optional[List[uuid.UUID]] = None
    applicable_categories: Optional[List[EventCategory]] = None
    excluded_events: Optional[List[uuid.UUID]] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None
    target_users: Optional[List[str]] = None

    @field_validator("valid_from", "valid_until")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

class PromoCodeStats(CamelModel):
    total_usage: int = 0
    total_discount: float = 0
    total_revenue: float = 0

class PromoCodeResponse(CamelModel):
    """Schema for promo code response"""
    id: uuid.UUID
    code: str
    description: str
    type: PromoCodeType
    value: float
    min_order_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    user_usage_limit: Optional[int] = None
    usage_count: int
    remaining_usage: Optional[int] = None
    valid_from: datetime
    valid_until: datetime
    applicable_events: List[str] = Field(default_factory=list)
    applicable_categories: List[str] = Field(default_factory=list)
    excluded_events: List[str] = Field(default_factory=list)
    is_active: bool
    is_public: bool
    target_users: List[str] = Field(default_factory=list)
    status: PromoCodeStatus
    retired_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("valid_from", "valid_until", "retired_at", "created_at", "updated_at")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

class PromoCodeWithStats(PromoCodeResponse):
    stats: PromoCodeStats = Field(default_factory=PromoCodeStats)

class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int

class PromoCodeListResponse(CamelModel):
    promo_codes: List[PromoCodeWithStats]
    pagination: Pagination

class PromoCodeMutationResponse(CamelModel):
    message: str
    promo_code: PromoCodeResponse

class PromoCodeDeleteResponse(CamelModel):
    message: str
    retired: bool
    promo_code: Optional[PromoCodeResponse] = None

class PromoCodeUsageResponse(CamelModel):
    id: uuid.UUID
    promo_code_id: uuid.UUID
    user_id: str
    booking_id: uuid.UUID
    original_amount: float
    discount_amount: float
    final_amount: float
    used_at: datetime

    @field_validator("used_at")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

class PromoCodeUsageListResponse(CamelModel):
    usages: List[PromoCodeUsageResponse]
    pagination: Pagination

# Analytics

class AnalyticsOverview(CamelModel):
    total_promo_codes: int
    active_promo_codes: int
    expired_promo_codes: int
    total_usage: int
    total_discount: float
    total_revenue: float
    average_discount: float
    average_order_value: float

class PromoPerformance(CamelModel):
    promo_code_id: uuid.UUID
    code: str
    description: str
    type: PromoCodeType
    value: float
    usage_count: int
    total_discount: float
    total_revenue: float

class TopPerformers(CamelModel):
    by_usage: List[PromoPerformance]
    by_discount: List[PromoPerformance]

class DailyTrend(CamelModel):
    date: str
    usage_count: int
    total_discount: float
    total_revenue: float

class TypeDistribution(CamelModel):
    type: PromoCodeType
    count: int
    total_discount: float

class UserEngagement(CamelModel):
    unique_users: int
    average_usage_per_user: float

class RecentActivity(CamelModel):
    id: uuid.UUID
    code: str
    user_id: str
    booking_id: uuid.UUID
    used_at: datetime
    discount: float
    final_amount: float

    @field_validator("used_at")
    @classmethod
    def to_utc(cls, v):
        return ensure_utc(v)

class PromoAnalyticsResponse(CamelModel):
    overview: AnalyticsOverview
    top_performers: TopPerformers
    daily_trends: List[DailyTrend]
    type_distribution: List[TypeDistribution]
    user_engagement: UserEngagement
    recent_activity: List[RecentActivity]
