from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest

from src.audiocast.exceptions import InsufficientPrivilegeError, PublishFailedError
from src.audiocast.publishing.publishing_base import (
    MetadataPatch,
    VideoMetadata,
    clip_tags,
    prepare_metadata,
)
from src.audiocast.publishing.publishing_youtube import YouTubePublishClient
from src.audiocast.uploads.upload_models import Visibility

NOW = datetime(2026, 3, 1, 12, 0, 0)
UPLOAD_SESSION = "https://upload.test/session/abc"


def build_client(handler) -> YouTubePublishClient:
    return YouTubePublishClient(transport=httpx.MockTransport(handler), clock=lambda: NOW)


def test_prepare_metadata_clips_to_platform_limits() -> None:
    prepared = prepare_metadata(
        VideoMetadata(title="t" * 150, description="d" * 6000, tags=["tag"] * 400),
        now=NOW,
    )

    assert len(prepared.title) == 100
    assert len(prepared.description) == 5000
    assert sum(len(tag) for tag in prepared.tags) <= 500


def test_prepare_metadata_forces_private_for_future_schedule() -> None:
    publish_at = NOW + timedelta(hours=1)

    prepared = prepare_metadata(
        VideoMetadata(title="x", visibility=Visibility.UNLISTED, publish_at=publish_at), now=NOW
    )

    assert prepared.visibility is Visibility.PRIVATE
    assert prepared.publish_at == publish_at


def test_prepare_metadata_drops_past_schedule() -> None:
    prepared = prepare_metadata(
        VideoMetadata(title="x", visibility=Visibility.PUBLIC, publish_at=NOW - timedelta(minutes=1)),
        now=NOW,
    )

    assert prepared.visibility is Visibility.PUBLIC
    assert prepared.publish_at is None


def test_clip_tags_skips_blank_entries() -> None:
    assert clip_tags([" lofi ", "", "beats"]) == ["lofi", "beats"]


@pytest.mark.asyncio
async def test_publish_runs_resumable_upload(tmp_path: Path) -> None:
    video = tmp_path / "video.mp4"
    video.write_bytes(b"0123456789")
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": UPLOAD_SESSION})
        return httpx.Response(201, json={"id": "yt-123"})

    result = await build_client(handler).publish(
        "token",
        video,
        10,
        VideoMetadata(
            title="A" * 120,
            tags=["one"],
            visibility=Visibility.PUBLIC,
            publish_at=NOW + timedelta(hours=2),
        ),
    )

    init, upload = requests
    body = json.loads(init.content)
    assert init.url.params["uploadType"] == "resumable"
    assert init.headers["X-Upload-Content-Length"] == "10"
    assert len(body["snippet"]["title"]) == 100
    assert body["snippet"]["categoryId"] == "10"
    assert body["status"]["privacyStatus"] == "private"
    assert body["status"]["publishAt"] == "2026-03-01T14:00:00.000Z"
    assert str(upload.url) == UPLOAD_SESSION
    assert upload.read() == b"0123456789"
    assert result.remote_id == "yt-123"
    assert result.remote_url.endswith("v=yt-123")


@pytest.mark.asyncio
async def test_publish_reads_video_off_the_event_loop(tmp_path: Path, monkeypatch) -> None:
    video = tmp_path / "video.mp4"
    video.write_bytes(b"x" * 25)
    offloaded: list[object] = []
    original_to_thread = asyncio.to_thread

    async def recording_to_thread(func, /, *args, **kwargs):
        offloaded.append(func)
        return await original_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
    uploaded: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, headers={"Location": UPLOAD_SESSION})
        uploaded.append(request.read())
        return httpx.Response(201, json={"id": "yt-9"})

    client = build_client(handler)
    client.chunk_size = 10
    await client.publish("token", video, 25, VideoMetadata(title="x"))

    assert uploaded == [b"x" * 25]
    assert len(offloaded) == 4


@pytest.mark.asyncio
async def test_publish_without_location_fails(tmp_path: Path) -> None:
    video = tmp_path / "video.mp4"
    video.write_bytes(b"x")

    with pytest.raises(PublishFailedError, match="resumable upload URL"):
        await build_client(lambda request: httpx.Response(200)).publish(
            "token", video, 1, VideoMetadata(title="x")
        )


@pytest.mark.asyncio
async def test_publish_quota_error_is_reported(tmp_path: Path) -> None:
    video = tmp_path / "video.mp4"
    video.write_bytes(b"x")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": {"status": "PERMISSION_DENIED", "message": "quotaExceeded"}})

    with pytest.raises(PublishFailedError, match="quotaExceeded"):
        await build_client(handler).publish("token", video, 1, VideoMetadata(title="x"))


@pytest.mark.asyncio
async def test_delete_treats_not_found_as_success() -> None:
    await build_client(lambda request: httpx.Response(404, json={"error": {"message": "videoNotFound"}})).delete(
        "token", "gone"
    )


@pytest.mark.asyncio
async def test_delete_other_errors_raise() -> None:
    with pytest.raises(PublishFailedError):
        await build_client(lambda request: httpx.Response(500, text="boom")).delete("token", "vid")


@pytest.mark.asyncio
async def test_attach_thumbnail_without_privilege() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"\xff\xd8", headers={"Content-Type": "image/jpeg"})
        return httpx.Response(403, json={"error": {"message": "forbidden"}})

    with pytest.raises(InsufficientPrivilegeError):
        await build_client(handler).attach_thumbnail("token", "vid", "https://cdn.test/cover.jpg")


@pytest.mark.asyncio
async def test_attach_thumbnail_uploads_image_bytes() -> None:
    posted: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"PNGDATA", headers={"Content-Type": "image/png"})
        posted.append(request)
        return httpx.Response(200, json={"items": []})

    await build_client(handler).attach_thumbnail("token", "vid", "https://cdn.test/cover.png")

    assert posted[0].url.params["videoId"] == "vid"
    assert posted[0].headers["Content-Type"] == "image/png"
    assert posted[0].content == b"PNGDATA"


@pytest.mark.asyncio
async def test_update_merges_existing_snippet() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "snippet": {"title": "Old", "description": "Keep", "categoryId": "10"},
                            "status": {"privacyStatus": "private", "uploadStatus": "processed"},
                        }
                    ]
                },
            )
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "vid"})

    await build_client(handler).update(
        "token", "vid", MetadataPatch(title="New", visibility=Visibility.PUBLIC)
    )

    assert sent[0]["snippet"]["title"] == "New"
    assert sent[0]["snippet"]["description"] == "Keep"
    assert sent[0]["status"] == {"privacyStatus": "public"}
