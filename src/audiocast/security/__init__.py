"""Request throttling and CORS helpers."""

from .rate_limit import RateLimiter, build_rate_limiters, rate_limited

__all__ = ["RateLimiter", "build_rate_limiters", "rate_limited"]
