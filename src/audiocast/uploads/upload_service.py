"""Upload intake and owner-facing management."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..credentials.token_store import TokenStore
from ..exceptions import (
    CredentialsMissingError,
    FormatNotAllowedError,
    InvalidRequestError,
    NotFoundError,
    PlanLimitExceededError,
    UnauthorizedError,
)
from ..files.file_resolver import AudioFileRepository
from ..pipeline.upload_pipeline import SweepReport, UploadPipeline
from ..plans.plan_policy import PlanPolicy, UsageSummary, is_format_allowed
from ..publishing.publishing_base import MetadataPatch, PublishClient
from .upload_models import NewUpload, UploadChanges, UploadRecord, UploadStatus
from .upload_repository import UploadRepository
from .validation import (
    parse_scheduled_at,
    parse_visibility,
    sanitize_string,
    sanitize_tags,
    validate_thumbnail_url,
    validate_title,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UploadRequest:
    """Raw intake payload before sanitizing."""

    owner_id: str
    file_id: str
    title: str
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    thumbnail_url: str | None = None
    visibility: str | None = None
    scheduled_at: str | datetime | None = None


@dataclass(slots=True)
class UploadService:
    """Validate intake requests, create records and manage them for owners."""

    uploads: UploadRepository
    files: AudioFileRepository
    plans: PlanPolicy
    token_store: TokenStore
    pipeline: UploadPipeline
    publish_client: PublishClient
    hold_scheduled_uploads: bool = False
    clock: Callable[[], datetime] = datetime.utcnow
    log: logging.Logger = field(default_factory=lambda: logger)

    async def create_upload(self, request: UploadRequest) -> UploadRecord:
        owner_id = sanitize_string(request.owner_id)
        file_id = sanitize_string(request.file_id)
        if not owner_id:
            raise InvalidRequestError("User ID is required")
        if not file_id:
            raise InvalidRequestError("File ID is required")
        title = validate_title(request.title)
        now = self.clock()

        if not await self.token_store.has_usable_credential(owner_id):
            raise CredentialsMissingError("YouTube account not connected")
        # Refreshes now so a revoked grant surfaces before the record exists.
        if await self.token_store.get_tokens(owner_id) is None:
            raise CredentialsMissingError("YouTube account not connected")

        limits = await _run_sync(self.plans.get_plan_limits, owner_id)
        if not limits.unlimited:
            period_start = await _run_sync(self.plans.period_start, owner_id, now)
            used = await _run_sync(self.plans.get_usage_count, owner_id, period_start)
            if used >= limits.max_per_period:
                raise PlanLimitExceededError(
                    f"Upload limit reached: {used}/{limits.max_per_period} uploads this period"
                )

        asset = await _run_sync(self.files.get, file_id)
        if asset is None or asset.owner_id != owner_id:
            raise NotFoundError("File not found")
        if not is_format_allowed(limits, asset.format, asset.name):
            raise FormatNotAllowedError(
                "File format not allowed on your plan. Allowed formats: "
                + ", ".join(limits.allowed_formats)
            )

        scheduled_at = parse_scheduled_at(request.scheduled_at, now=now)
        new = NewUpload(
            owner_id=owner_id,
            file_id=file_id,
            title=title,
            description=sanitize_string(request.description) or None,
            tags=sanitize_tags(request.tags),
            thumbnail_url=validate_thumbnail_url(request.thumbnail_url),
            visibility=parse_visibility(request.visibility),
            scheduled_at=scheduled_at,
        )
        record = await _run_sync(self.uploads.create, new, now=now)
        self.log.info(
            "uploads.created",
            extra={"upload_id": record.id, "owner_id": owner_id, "scheduled": bool(scheduled_at)},
        )

        if self.hold_scheduled_uploads and scheduled_at is not None and scheduled_at > now:
            self.log.info("uploads.held_for_schedule", extra={"upload_id": record.id})
        else:
            self.pipeline.submit(record.id)
        return record

    def list_uploads(self, owner_id: str, *, include_archived: bool = False) -> list[UploadRecord]:
        return self.uploads.list_for_owner(owner_id, include_archived=include_archived)

    def get_limits(self, owner_id: str) -> UsageSummary:
        return self.plans.usage_summary(owner_id, self.clock())

    def set_archived(self, upload_id: str, owner_id: str, archived: bool) -> UploadRecord:
        self._owned(upload_id, owner_id)
        return self.uploads.set_archived(upload_id, archived=archived, now=self.clock())

    async def update_upload(self, upload_id: str, owner_id: str, changes: UploadChanges) -> UploadRecord:
        await _run_sync(self._owned, upload_id, owner_id)
        if changes.title is not None:
            changes.title = validate_title(changes.title)
        if changes.description is not None:
            changes.description = sanitize_string(changes.description)
        if changes.tags is not None:
            changes.tags = sanitize_tags(changes.tags)
        if changes.is_empty():
            raise InvalidRequestError("No changes supplied")

        record = await _run_sync(self.uploads.update_metadata, upload_id, changes, now=self.clock())
        if record.status is UploadStatus.UPLOADED and record.remote_video_id:
            await self._update_remote(record, changes)
        return record

    async def delete_upload(self, upload_id: str, owner_id: str) -> None:
        await self.pipeline.delete(upload_id, owner_id)

    async def retry_upload(self, upload_id: str, owner_id: str) -> UploadRecord:
        await _run_sync(self._owned, upload_id, owner_id)
        if not await _run_sync(self.uploads.reset_failed, upload_id, now=self.clock()):
            raise InvalidRequestError("Only failed uploads can be retried")
        self.pipeline.submit(upload_id)
        return await _run_sync(self.uploads.get, upload_id)

    async def process_pending(self) -> SweepReport:
        return await self.pipeline.process_pending()

    async def _update_remote(self, record: UploadRecord, changes: UploadChanges) -> None:
        try:
            credential = await self.token_store.get_tokens(record.owner_id)
            if credential is None:
                self.log.warning("uploads.remote_update.skipped", extra={"upload_id": record.id})
                return
            await self.publish_client.update(
                credential.access_token,
                record.remote_video_id or "",
                MetadataPatch(
                    title=changes.title,
                    description=changes.description,
                    tags=changes.tags,
                    visibility=changes.visibility,
                ),
            )
        except Exception as exc:
            self.log.warning(
                "uploads.remote_update.failed",
                extra={"upload_id": record.id, "error": str(exc)},
            )

    def _owned(self, upload_id: str, owner_id: str) -> UploadRecord:
        record = self.uploads.get(upload_id)
        if record.owner_id != owner_id:
            raise UnauthorizedError("Unauthorized: You do not own this upload")
        return record


async def _run_sync(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return await asyncio.to_thread(func, *args, **kwargs)
