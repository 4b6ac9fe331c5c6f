"""Data structures for stored OAuth credentials."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(slots=True)
class Credential:
    """Access/refresh token pair of one principal."""

    principal_id: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    channel_id: str | None = None
    channel_title: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        """Unknown expiry counts as expiring so it gets refreshed."""
        if self.expires_at is None:
            return True
        return self.expires_at - now < margin

    def is_usable(self, now: datetime) -> bool:
        if self.refresh_token:
            return True
        return bool(self.access_token) and not self.is_expired(now)


@dataclass(slots=True)
class TokenGrant:
    """Tokens returned by the identity provider."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None


@dataclass(slots=True)
class ChannelInfo:
    channel_id: str
    channel_title: str | None = None
