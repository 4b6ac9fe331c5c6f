"""Abstract publish client definition and metadata limits."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

from ..uploads.upload_models import Visibility

TITLE_LIMIT = 100
DESCRIPTION_LIMIT = 5000
TAGS_TOTAL_LIMIT = 500
MUSIC_CATEGORY_ID = "10"


@dataclass(slots=True)
class VideoMetadata:
    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    publish_at: datetime | None = None
    category_id: str = MUSIC_CATEGORY_ID


@dataclass(slots=True)
class MetadataPatch:
    """Partial update; ``None`` keeps the remote value."""

    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    visibility: Visibility | None = None


@dataclass(slots=True)
class PublishResult:
    """Standard response from publish clients."""

    remote_id: str
    remote_url: str


def clip_tags(tags: list[str]) -> list[str]:
    """Keep tags in order while their combined length stays within the limit."""
    clipped: list[str] = []
    used = 0
    for tag in tags[:TAGS_TOTAL_LIMIT]:
        tag = tag.strip()
        if not tag:
            continue
        if used + len(tag) > TAGS_TOTAL_LIMIT:
            break
        clipped.append(tag)
        used += len(tag)
    return clipped


def prepare_metadata(metadata: VideoMetadata, *, now: datetime) -> VideoMetadata:
    """Clip fields to platform limits and apply scheduling visibility.

    A future ``publish_at`` forces ``private``; the platform flips the video
    to public at that time. A past one is dropped.
    """
    publish_at = metadata.publish_at
    visibility = metadata.visibility
    if publish_at is not None and publish_at > now:
        visibility = Visibility.PRIVATE
    else:
        publish_at = None
    return replace(
        metadata,
        title=metadata.title[:TITLE_LIMIT],
        description=(metadata.description or "")[:DESCRIPTION_LIMIT],
        tags=clip_tags(list(metadata.tags)),
        visibility=visibility,
        publish_at=publish_at,
    )


class PublishClient(ABC):
    """Base interface for video hosting clients."""

    @abstractmethod
    async def publish(
        self,
        access_token: str,
        video_path: Path,
        size_bytes: int,
        metadata: VideoMetadata,
    ) -> PublishResult:
        """Upload the file and return the remote identifiers."""

    @abstractmethod
    async def attach_thumbnail(self, access_token: str, remote_id: str, thumbnail_url: str) -> None:
        """Set a custom thumbnail; may raise ``InsufficientPrivilegeError``."""

    @abstractmethod
    async def delete(self, access_token: str, remote_id: str) -> None:
        """Delete the remote video; an already missing video is not an error."""

    @abstractmethod
    async def update(self, access_token: str, remote_id: str, patch: MetadataPatch) -> None:
        """Apply a partial metadata update to the remote video."""
