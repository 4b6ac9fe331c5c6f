"""Pydantic request/response models for the upload routes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..plans.plan_policy import UsageSummary
from .upload_models import UploadRecord, Visibility


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UploadCreateRequest(_CamelModel):
    user_id: str = Field(alias="userId")
    file_id: str = Field(alias="fileId")
    title: str
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    thumbnail_url: str | None = Field(default=None, alias="thumbnailUrl")
    privacy_status: str | None = Field(default=None, alias="privacyStatus")
    scheduled_at: str | None = Field(default=None, alias="scheduledAt")


class UploadUpdateRequest(_CamelModel):
    user_id: str = Field(alias="userId")
    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    privacy_status: Visibility | None = Field(default=None, alias="privacyStatus")


class ArchiveRequest(_CamelModel):
    user_id: str = Field(alias="userId")
    archived: bool = True


class OwnerRequest(_CamelModel):
    user_id: str = Field(alias="userId")


def upload_to_dict(record: UploadRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "userId": record.owner_id,
        "fileId": record.file_id,
        "title": record.title,
        "description": record.description,
        "tags": list(record.tags),
        "thumbnailUrl": record.thumbnail_url,
        "privacyStatus": record.visibility.value,
        "scheduledAt": _iso(record.scheduled_at),
        "status": record.status.value,
        "youtubeVideoId": record.remote_video_id,
        "youtubeUrl": (
            f"https://www.youtube.com/watch?v={record.remote_video_id}"
            if record.remote_video_id
            else None
        ),
        "errorMessage": record.error_message,
        "archived": record.archived,
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
    }


def usage_to_dict(summary: UsageSummary) -> dict[str, Any]:
    return {
        "plan": summary.plan,
        "used": summary.used,
        "limit": summary.limit,
        "remaining": summary.remaining,
        "unlimited": summary.limit is None,
        "periodStart": _iso(summary.period_start),
        "resetsAt": _iso(summary.resets_at),
        "allowedFormats": list(summary.allowed_formats),
    }


def _iso(value: datetime | None) -> str | None:
    return f"{value.isoformat()}Z" if value is not None else None
