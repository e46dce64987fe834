"""Models package initialization"""

from .base import Base
from .event import Event, EventCategory
from .booking import Booking, BookingStatus
from .promo_code import PromoCode, PromoCodeUsage, PromoCodeType, PromoCodeStatus
from .admin_log import AdminLog

# Export all models
__all__ = [
    "Base",
    "Event",
    "EventCategory",
    "Booking",
    "BookingStatus",
    "PromoCode",
    "PromoCodeUsage",
    "PromoCodeType",
    "PromoCodeStatus",
    "AdminLog",
]
