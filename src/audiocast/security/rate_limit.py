"""In-memory per-client rate limiting."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import HTTPException, Request, status


def utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class RateLimiter:
    """Fixed-window counter keyed by client address."""

    limit: int
    window_seconds: int
    name: str = "general"
    clock: Callable[[], datetime] = utcnow
    buckets: dict[str, tuple[int, datetime]] = field(default_factory=dict)
    _last_prune: datetime | None = field(default=None, init=False, repr=False)

    def check(self, key: str) -> None:
        now = self.clock()
        self._prune(now)
        count, window_start = self.buckets.get(key, (0, now))
        if (now - window_start).total_seconds() > self.window_seconds:
            count, window_start = 0, now
        if count >= self.limit:
            retry_after = max(
                1, int(self.window_seconds - (now - window_start).total_seconds())
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "status": "error",
                    "failure_reason": "rate_limited",
                    "message": "Too many requests, please try again later.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )
        self.buckets[key] = (count + 1, window_start)

    def _prune(self, now: datetime) -> None:
        """Drop clients whose window ended; runs at most once per window."""
        if self._last_prune is not None and (
            (now - self._last_prune).total_seconds() < self.window_seconds
        ):
            return
        self._last_prune = now
        expired = [
            key
            for key, (_, window_start) in self.buckets.items()
            if (now - window_start).total_seconds() > self.window_seconds
        ]
        for key in expired:
            del self.buckets[key]


def build_rate_limiters() -> dict[str, RateLimiter]:
    return {
        "general": RateLimiter(limit=100, window_seconds=15 * 60, name="general"),
        "youtube": RateLimiter(limit=50, window_seconds=15 * 60, name="youtube"),
        "health": RateLimiter(limit=60, window_seconds=60, name="health"),
    }


def rate_limited(*names: str) -> Callable[[Request], None]:
    """FastAPI dependency enforcing the named limiters from ``app.state``."""

    def dependency(request: Request) -> None:
        limiters: dict[str, RateLimiter] = getattr(request.app.state, "rate_limiters", {})
        key = request.client.host if request.client else "anonymous"
        for name in names:
            limiter = limiters.get(name)
            if limiter is not None:
                limiter.check(key)

    return dependency
