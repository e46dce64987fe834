"""Services package"""

from .promo_ledger import PromoLedger
from .promo_rules import CandidateOrder, DiscountQuote, PROMO_RULES
from .promo_stores import BookingStore, PromoCodeCatalog, UsageJournal
from .audit_service import AuditService

__all__ = [
    "PromoLedger",
    "CandidateOrder",
    "DiscountQuote",
    "PROMO_RULES",
    "BookingStore",
    "PromoCodeCatalog",
    "UsageJournal",
    "AuditService",
]
