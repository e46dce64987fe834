"""
Helper utilities
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from trailhead.core.config import settings

TWO_PLACES = Decimal("0.01")

def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC
    
    Some backends (SQLite) hand timestamps back without tzinfo; those are
    stored in UTC so the zone is attached rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def to_decimal(value: Union[Decimal, float, int, str, None]) -> Optional[Decimal]:
    """Convert numbers to Decimal without float artifacts"""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def round_money(amount: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round a currency amount to 2 decimal places, half-up
    
    Args:
        amount: Amount to round
        
    Returns:
        Rounded Decimal
    """
    return to_decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def format_currency(amount: Union[Decimal, float, int], symbol: Optional[str] = None) -> str:
    """
    Format amount with Indian digit grouping, e.g. ``₹1,25,000.00``
    
    Args:
        amount: Amount to format
        symbol: Currency symbol, defaults to the configured one
        
    Returns:
        Formatted currency string
    """
    symbol = settings.CURRENCY_SYMBOL if symbol is None else symbol
    amount_str = str(round_money(amount))
    
    negative = amount_str.startswith("-")
    integer_part, decimal_part = amount_str.lstrip("-").split(".")
    
    # Add commas for Indian numbering
    if len(integer_part) > 3:
        # Last 3 digits
        result = integer_part[-3:]
        integer_part = integer_part[:-3]
        
        # Add commas every 2 digits
        while integer_part:
            result = integer_part[-2:] + "," + result
            integer_part = integer_part[:-2]
    else:
        result = integer_part
    
    return f"{'-' if negative else ''}{symbol}{result}.{decimal_part}"
