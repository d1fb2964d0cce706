"""HTTP 中间件."""

from retrui.middleware.rate_limit import FixedWindowRateLimiter, RateLimitMiddleware

__all__ = ["FixedWindowRateLimiter", "RateLimitMiddleware"]
