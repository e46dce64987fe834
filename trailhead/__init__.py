"""Trailhead API - promo code ledger for adventure bookings"""

__version__ = "1.0.0"
