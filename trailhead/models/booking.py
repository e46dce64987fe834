"""Booking model

Only the fields the promo ledger reads or writes are mapped here.
"""

from sqlalchemy import Column, String, Numeric, Enum, ForeignKey, Index, CheckConstraint, Uuid
from sqlalchemy.orm import relationship
import enum

from .base import Base, TimestampedModel, UUIDModel

class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"

class Booking(Base, TimestampedModel, UUIDModel):
    """Event booking placed by a user"""
    
    __tablename__ = "bookings"
    
    booking_reference = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    
    # Amounts
    total_amount = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), default=0, nullable=False)
    final_amount = Column(Numeric(10, 2), nullable=False)
    
    # Relationships
    event = relationship("Event")
    
    __table_args__ = (
        CheckConstraint("discount_amount >= 0", name="check_booking_discount_non_negative"),
        CheckConstraint("final_amount >= 0", name="check_booking_final_non_negative"),
        Index("idx_bookings_user_event", "user_id", "event_id"),
    )
