"""Utilities package"""

from .helpers import utcnow, ensure_utc, to_decimal, round_money, format_currency
from .pagination import paginate

__all__ = [
    "utcnow",
    "ensure_utc",
    "to_decimal",
    "round_money",
    "format_currency",
    "paginate",
]
