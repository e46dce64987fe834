"""API v1 routes aggregation"""

from fastapi import APIRouter

from .promo_codes.router import router as promo_codes_router

# Create v1 router
api_router = APIRouter()

api_router.include_router(promo_codes_router, prefix="/promo-codes", tags=["Promo Codes"])
