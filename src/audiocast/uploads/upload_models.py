"""Data structures for upload records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class UploadStatus(StrEnum):
    """Lifecycle statuses; transitions only move left to right."""

    PENDING = "pending"
    PROCESSING = "processing"
    UPLOADED = "uploaded"
    FAILED = "failed"


class Visibility(StrEnum):
    PUBLIC = "public"
    UNLISTED = "unlisted"
    PRIVATE = "private"


@dataclass(slots=True)
class UploadRecord:
    """Snapshot of one requested publish job."""

    id: str
    owner_id: str
    file_id: str
    title: str
    description: str | None
    tags: list[str]
    thumbnail_url: str | None
    visibility: Visibility
    scheduled_at: datetime | None
    status: UploadStatus
    remote_video_id: str | None
    error_message: str | None
    archived: bool
    created_at: datetime
    updated_at: datetime
    # Set while processing; terminal writes must present the same token.
    claim_token: str | None = None


@dataclass(slots=True)
class NewUpload:
    owner_id: str
    file_id: str
    title: str
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    thumbnail_url: str | None = None
    visibility: Visibility = Visibility.PUBLIC
    scheduled_at: datetime | None = None


@dataclass(slots=True)
class UploadChanges:
    """Partial metadata edit; ``None`` leaves a field untouched."""

    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    visibility: Visibility | None = None

    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.description is None
            and self.tags is None
            and self.visibility is None
        )
