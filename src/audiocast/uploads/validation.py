"""Input sanitizing for upload intake."""

from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import urlparse

from ..exceptions import InvalidRequestError
from ..publishing.publishing_base import TITLE_LIMIT
from .upload_models import Visibility


def sanitize_string(value: str | None) -> str:
    """Trim and drop angle brackets."""
    if not value:
        return ""
    return value.strip().replace("<", "").replace(">", "")


def sanitize_tags(tags: list[str] | None) -> list[str]:
    cleaned = (sanitize_string(tag) for tag in tags or [])
    return [tag for tag in cleaned if tag]


def validate_title(title: str | None) -> str:
    cleaned = sanitize_string(title)
    if not cleaned:
        raise InvalidRequestError("Title is required")
    if len(cleaned) > TITLE_LIMIT:
        raise InvalidRequestError(f"Title must be {TITLE_LIMIT} characters or less")
    return cleaned


def parse_visibility(value: str | None) -> Visibility:
    if not value:
        return Visibility.PUBLIC
    try:
        return Visibility(value.strip().lower())
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid visibility '{value}'") from exc


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_scheduled_at(value: str | datetime | None, *, now: datetime) -> datetime | None:
    """Return a naive UTC timestamp that is not in the past."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidRequestError("Invalid scheduled date format") from exc
    scheduled = to_naive_utc(parsed)
    if scheduled < now:
        raise InvalidRequestError("Scheduled date must be in the future")
    return scheduled


def validate_thumbnail_url(value: str | None) -> str | None:
    cleaned = sanitize_string(value)
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidRequestError("Invalid thumbnail URL")
    return cleaned
