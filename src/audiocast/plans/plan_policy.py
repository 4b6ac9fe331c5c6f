"""Plan tiers, rolling usage periods and quota checks."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import PurePosixPath

from sqlalchemy.orm import Session

from ..db.db_models import PrincipalModel
from ..exceptions import RepositoryError
from ..uploads.upload_repository import UploadRepository

logger = logging.getLogger(__name__)

PERIOD = timedelta(days=30)
DEFAULT_PLAN = "free"
# Reported when usage cannot be counted, so a broken database never grants uploads.
FAIL_SAFE_USAGE = 999_999


@dataclass(frozen=True, slots=True)
class PlanLimits:
    max_per_period: int | None
    allowed_formats: tuple[str, ...]

    @property
    def unlimited(self) -> bool:
        return self.max_per_period is None


PLAN_LIMITS: dict[str, PlanLimits] = {
    "free": PlanLimits(max_per_period=4, allowed_formats=("mp3",)),
    "bedroom": PlanLimits(max_per_period=30, allowed_formats=("mp3",)),
    "pro": PlanLimits(max_per_period=None, allowed_formats=("mp3", "wav")),
    "studio": PlanLimits(max_per_period=None, allowed_formats=("mp3", "wav")),
}

_FORMAT_ALIASES = {
    "mp3": "mp3",
    "mpeg": "mp3",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "wav": "wav",
    "wave": "wav",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
}


def normalize_format(file_format: str | None, file_name: str | None = None) -> str | None:
    """Map a stored format (or the file extension as fallback) to mp3/wav."""
    if file_format:
        normalized = _FORMAT_ALIASES.get(file_format.strip().lower())
        if normalized:
            return normalized
    if file_name:
        suffix = PurePosixPath(file_name).suffix.lower().lstrip(".")
        return _FORMAT_ALIASES.get(suffix)
    return None


def is_format_allowed(limits: PlanLimits, file_format: str | None, file_name: str | None = None) -> bool:
    normalized = normalize_format(file_format, file_name)
    return normalized is not None and normalized in limits.allowed_formats


def roll_period_start(anchor: datetime, now: datetime) -> datetime:
    """Move ``anchor`` forward by whole periods to the one containing ``now``."""
    elapsed = (now - anchor) // PERIOD
    return anchor + elapsed * PERIOD


@dataclass(slots=True)
class UsageSummary:
    plan: str
    used: int
    limit: int | None
    remaining: int | None
    period_start: datetime
    resets_at: datetime
    allowed_formats: tuple[str, ...]


class PlanPolicy:
    """Answer plan and usage questions for intake."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        uploads: UploadRepository,
    ) -> None:
        self._session_factory = session_factory
        self._uploads = uploads

    def get_plan(self, principal_id: str) -> str:
        with self._session_factory() as session:
            model = session.get(PrincipalModel, principal_id)
            plan = (model.plan if model is not None else None) or DEFAULT_PLAN
        return plan if plan in PLAN_LIMITS else DEFAULT_PLAN

    def get_plan_limits(self, principal_id: str) -> PlanLimits:
        return PLAN_LIMITS[self.get_plan(principal_id)]

    def period_start(self, principal_id: str, now: datetime) -> datetime:
        """Start of the rolling 30 day window the principal is currently in."""
        with self._session_factory() as session:
            model = session.get(PrincipalModel, principal_id)
            anchor: datetime | None = None
            if model is not None:
                if model.subscription_period_end is not None:
                    anchor = model.subscription_period_end - PERIOD
                else:
                    anchor = model.created_at
                    if model.updated_at and (anchor is None or model.updated_at > anchor):
                        anchor = model.updated_at
        if anchor is None:
            anchor = self._uploads.first_created_at(principal_id)
        if anchor is None:
            return now - PERIOD
        return roll_period_start(anchor, now)

    def get_usage_count(self, principal_id: str, period_start: datetime) -> int:
        try:
            return self._uploads.count_created_since(principal_id, period_start)
        except RepositoryError:
            logger.exception("plans.usage.count_failed", extra={"principal_id": principal_id})
            return FAIL_SAFE_USAGE

    def usage_summary(self, principal_id: str, now: datetime) -> UsageSummary:
        plan = self.get_plan(principal_id)
        limits = PLAN_LIMITS[plan]
        start = self.period_start(principal_id, now)
        used = self.get_usage_count(principal_id, start)
        remaining = None if limits.unlimited else max(0, limits.max_per_period - used)
        return UsageSummary(
            plan=plan,
            used=used,
            limit=limits.max_per_period,
            remaining=remaining,
            period_start=start,
            resets_at=start + PERIOD,
            allowed_formats=limits.allowed_formats,
        )
