"""YouTube Data API v3 publish client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from ..exceptions import InsufficientPrivilegeError, PublishFailedError
from .publishing_base import (
    MetadataPatch,
    PublishClient,
    PublishResult,
    VideoMetadata,
    clip_tags,
    prepare_metadata,
    DESCRIPTION_LIMIT,
    TITLE_LIMIT,
)

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/youtube/v3"
UPLOAD_BASE = "https://www.googleapis.com/upload/youtube/v3"


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(slots=True)
class YouTubePublishClient(PublishClient):
    """Resumable uploads and video management over plain HTTP."""

    api_base: str = API_BASE
    upload_base: str = UPLOAD_BASE
    timeout_seconds: float = 30.0
    upload_timeout_seconds: float = 1800.0
    thumbnail_timeout_seconds: float = 30.0
    chunk_size: int = 1024 * 1024
    transport: httpx.AsyncBaseTransport | None = None
    clock: Callable[[], datetime] = _utcnow
    log: logging.Logger = field(default_factory=lambda: logger)

    async def publish(
        self,
        access_token: str,
        video_path: Path,
        size_bytes: int,
        metadata: VideoMetadata,
    ) -> PublishResult:
        prepared = prepare_metadata(metadata, now=self.clock())
        body = _video_resource(prepared)
        self.log.info(
            "youtube.publish.start",
            extra={"size_bytes": size_bytes, "privacy_status": body["status"]["privacyStatus"]},
        )

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                init = await client.post(
                    f"{self.upload_base}/videos",
                    params={"uploadType": "resumable", "part": "snippet,status"},
                    headers={
                        **_auth(access_token),
                        "X-Upload-Content-Type": "video/mp4",
                        "X-Upload-Content-Length": str(size_bytes),
                    },
                    json=body,
                )
                if init.status_code >= 400:
                    raise _publish_error("Upload session rejected", init)
                upload_url = init.headers.get("Location")
                if not upload_url:
                    raise PublishFailedError("YouTube API did not return a resumable upload URL")

                response = await client.put(
                    upload_url,
                    headers={
                        **_auth(access_token),
                        "Content-Type": "video/mp4",
                        "Content-Length": str(size_bytes),
                    },
                    content=_file_chunks(video_path, self.chunk_size),
                    timeout=self.upload_timeout_seconds,
                )
        except httpx.HTTPError as exc:
            raise PublishFailedError(f"YouTube HTTP error: {exc}") from exc

        if response.status_code not in (200, 201):
            raise _publish_error("Video upload failed", response)
        video_id = _json(response).get("id")
        if not video_id:
            raise PublishFailedError("Upload succeeded but YouTube returned no video ID")
        self.log.info("youtube.publish.success", extra={"remote_id": video_id})
        return PublishResult(
            remote_id=video_id,
            remote_url=f"https://www.youtube.com/watch?v={video_id}",
        )

    async def attach_thumbnail(self, access_token: str, remote_id: str, thumbnail_url: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.thumbnail_timeout_seconds,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                image = await client.get(thumbnail_url)
                if image.status_code >= 400:
                    raise PublishFailedError(
                        f"Failed to download thumbnail: HTTP {image.status_code}"
                    )
                content_type = image.headers.get("Content-Type", "image/jpeg").split(";")[0]
                response = await client.post(
                    f"{self.upload_base}/thumbnails/set",
                    params={"videoId": remote_id, "uploadType": "media"},
                    headers={**_auth(access_token), "Content-Type": content_type},
                    content=image.content,
                )
        except httpx.HTTPError as exc:
            raise PublishFailedError(f"Thumbnail upload failed: {exc}") from exc

        if response.status_code == 403:
            raise InsufficientPrivilegeError(
                f"Channel may not set custom thumbnails: {_extract_error(response)}"
            )
        if response.status_code >= 400:
            raise _publish_error("Thumbnail upload failed", response)

    async def delete(self, access_token: str, remote_id: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.delete(
                    f"{self.api_base}/videos",
                    params={"id": remote_id},
                    headers=_auth(access_token),
                )
        except httpx.HTTPError as exc:
            raise PublishFailedError(f"YouTube HTTP error: {exc}") from exc

        if response.status_code == 404:
            self.log.info("youtube.delete.already_gone", extra={"remote_id": remote_id})
            return
        if response.status_code >= 400:
            raise _publish_error("Video deletion failed", response)
        self.log.info("youtube.delete.success", extra={"remote_id": remote_id})

    async def update(self, access_token: str, remote_id: str, patch: MetadataPatch) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                current = await client.get(
                    f"{self.api_base}/videos",
                    params={"part": "snippet,status", "id": remote_id},
                    headers=_auth(access_token),
                )
                if current.status_code >= 400:
                    raise _publish_error("Video lookup failed", current)
                items = _json(current).get("items") or []
                if not items:
                    raise PublishFailedError(f"Remote video '{remote_id}' not found")

                snippet = dict(items[0].get("snippet") or {})
                status = dict(items[0].get("status") or {})
                if patch.title is not None:
                    snippet["title"] = patch.title[:TITLE_LIMIT]
                if patch.description is not None:
                    snippet["description"] = patch.description[:DESCRIPTION_LIMIT]
                if patch.tags is not None:
                    snippet["tags"] = clip_tags(list(patch.tags))
                if patch.visibility is not None:
                    status["privacyStatus"] = patch.visibility.value

                response = await client.put(
                    f"{self.api_base}/videos",
                    params={"part": "snippet,status"},
                    headers=_auth(access_token),
                    json={
                        "id": remote_id,
                        "snippet": {
                            "title": snippet.get("title", ""),
                            "description": snippet.get("description", ""),
                            "tags": snippet.get("tags", []),
                            "categoryId": snippet.get("categoryId", "10"),
                        },
                        "status": {
                            key: value
                            for key, value in status.items()
                            if key in ("privacyStatus", "publishAt", "selfDeclaredMadeForKids")
                        },
                    },
                )
        except httpx.HTTPError as exc:
            raise PublishFailedError(f"YouTube HTTP error: {exc}") from exc

        if response.status_code >= 400:
            raise _publish_error("Video update failed", response)
        self.log.info("youtube.update.success", extra={"remote_id": remote_id})


def _video_resource(metadata: VideoMetadata) -> dict[str, Any]:
    status: dict[str, Any] = {
        "privacyStatus": metadata.visibility.value,
        "selfDeclaredMadeForKids": False,
    }
    if metadata.publish_at is not None:
        status["publishAt"] = format_publish_at(metadata.publish_at)
    return {
        "snippet": {
            "title": metadata.title,
            "description": metadata.description,
            "tags": metadata.tags,
            "categoryId": metadata.category_id,
        },
        "status": status,
    }


def format_publish_at(value: datetime) -> str:
    """RFC 3339 in UTC; naive values are already UTC."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _auth(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


async def _file_chunks(path: Path, chunk_size: int) -> AsyncIterator[bytes]:
    with path.open("rb") as handle:
        while True:
            chunk = await asyncio.to_thread(handle.read, chunk_size)
            if not chunk:
                break
            yield chunk


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:300]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = (error.get("message") or "").strip()
        status = str(error.get("status") or "").strip()
        return " ".join(part for part in (status, message) if part)
    return str(data)[:300]


def _publish_error(prefix: str, response: httpx.Response) -> PublishFailedError:
    detail = _extract_error(response)
    logger.error(
        "youtube.response.error status=%s detail=%s",
        response.status_code,
        detail,
        extra={"status_code": response.status_code, "error_detail": detail},
    )
    return PublishFailedError(f"{prefix} (HTTP {response.status_code}): {detail}")
