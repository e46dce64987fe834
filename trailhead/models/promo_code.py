"""
Promo code and promo code usage models
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, Boolean, ForeignKey, Index,
    CheckConstraint, UniqueConstraint, Text, DateTime, Enum, JSON, Uuid
)
from sqlalchemy.orm import relationship
from typing import Optional
import enum

from .base import Base, TimestampedModel, UUIDModel
from trailhead.utils.helpers import utcnow

class PromoCodeType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"

class PromoCodeStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"  # deleted while it had usage history

class PromoCode(Base, TimestampedModel, UUIDModel):
    """Reusable discount definition"""
    
    __tablename__ = "promo_codes"
    
    code = Column(String(20), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=False)
    
    # Discount details
    type = Column(Enum(PromoCodeType), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    
    # Conditions
    min_order_amount = Column(Numeric(10, 2), nullable=True)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)
    
    # Usage limits
    usage_limit = Column(Integer, nullable=True)
    user_usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    
    # Validity window (inclusive)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    
    # Applicability (event ids are stored as strings)
    applicable_events = Column(JSON, default=list, nullable=False)
    applicable_categories = Column(JSON, default=list, nullable=False)
    excluded_events = Column(JSON, default=list, nullable=False)
    
    # Audience
    is_public = Column(Boolean, default=True, nullable=False)
    target_users = Column(JSON, default=list, nullable=False)
    
    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(Enum(PromoCodeStatus), default=PromoCodeStatus.ACTIVE, nullable=False, index=True)
    retired_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(64), nullable=True)
    
    # Relationships
    usages = relationship("PromoCodeUsage", back_populates="promo_code", passive_deletes=True)
    
    __table_args__ = (
        CheckConstraint("value >= 0", name="check_promo_value_non_negative"),
        CheckConstraint("usage_count >= 0", name="check_promo_usage_count_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="check_promo_usage_within_limit"
        ),
        CheckConstraint("usage_limit IS NULL OR usage_limit >= 1", name="check_promo_usage_limit_positive"),
        CheckConstraint(
            "user_usage_limit IS NULL OR user_usage_limit >= 1",
            name="check_promo_user_usage_limit_positive"
        ),
        Index("idx_promo_codes_active_valid", "is_active", "valid_from", "valid_until"),
        Index("idx_promo_codes_public", "is_public"),
    )
    
    @property
    def remaining_usage(self) -> Optional[int]:
        """Remaining global applications, None when unlimited"""
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - (self.usage_count or 0))
    

class PromoCodeUsage(Base, TimestampedModel, UUIDModel):
    """One successful application of a promo code to a booking"""
    
    __tablename__ = "promo_code_usages"
    
    promo_code_id = Column(Uuid(as_uuid=True), ForeignKey("promo_codes.id"), nullable=False)
    user_id = Column(String(64), nullable=False)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False)
    
    # Amounts
    original_amount = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False)
    final_amount = Column(Numeric(10, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    
    # Relationships
    promo_code = relationship("PromoCode", back_populates="usages")
    booking = relationship("Booking")
    
    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_promo_code_usages_booking"),
        CheckConstraint("original_amount >= 0", name="check_usage_original_non_negative"),
        CheckConstraint("discount_amount >= 0", name="check_usage_discount_non_negative"),
        CheckConstraint("final_amount >= 0", name="check_usage_final_non_negative"),
        Index("idx_promo_code_usages_code_user", "promo_code_id", "user_id"),
        Index("idx_promo_code_usages_code_used_at", "promo_code_id", "used_at"),
    )
