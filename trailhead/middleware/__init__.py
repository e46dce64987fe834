from .rate_limit import limiter, promo_limiter, rate_limit_exceeded_handler

__all__ = ["limiter", "promo_limiter", "rate_limit_exceeded_handler"]
