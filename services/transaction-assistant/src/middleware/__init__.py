"""HTTP middleware helpers for the transaction assistant."""

from middleware.rate_limit import SimpleRateLimiter, build_default_rate_limiter

__all__ = ["SimpleRateLimiter", "build_default_rate_limiter"]
