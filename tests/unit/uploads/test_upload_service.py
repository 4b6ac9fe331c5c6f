from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from src.audiocast.db.db_models import AudioFileModel, PrincipalModel
from src.audiocast.exceptions import (
    CredentialsMissingError,
    FormatNotAllowedError,
    InvalidRequestError,
    NotFoundError,
    PlanLimitExceededError,
    ReauthorizationRequiredError,
    UnauthorizedError,
)
from src.audiocast.files.file_resolver import AudioFileRepository
from src.audiocast.plans.plan_policy import PlanPolicy
from src.audiocast.uploads.upload_models import NewUpload, UploadChanges, UploadStatus, Visibility
from src.audiocast.uploads.upload_repository import UploadRepository
from src.audiocast.uploads.upload_service import UploadRequest, UploadService
from tests.mocks.pipeline_fakes import FakePublishClient, FakeTokenStore, make_credential

NOW = datetime(2026, 3, 10, 12, 0, 0)


class RecordingPipeline:
    def __init__(self) -> None:
        self.submitted: list[str] = []
        self.deleted: list[tuple[str, str]] = []

    def submit(self, upload_id: str) -> None:
        self.submitted.append(upload_id)

    async def delete(self, upload_id: str, owner_id: str) -> None:
        self.deleted.append((upload_id, owner_id))


def build_service(
    session_factory,
    *,
    token_store: FakeTokenStore | None = None,
    plan: str = "free",
    hold_scheduled_uploads: bool = False,
) -> tuple[UploadService, RecordingPipeline, FakePublishClient]:
    with session_factory() as session:
        session.add(PrincipalModel(id="user-1", plan=plan, created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(days=5)))
        session.add(AudioFileModel(id="file-mp3", owner_id="user-1", name="song.mp3", format="audio/mpeg"))
        session.add(AudioFileModel(id="file-wav", owner_id="user-1", name="song.wav", format=None))
        session.add(AudioFileModel(id="file-other", owner_id="user-2", name="x.mp3", format="mp3"))
        session.commit()
    uploads = UploadRepository(session_factory)
    pipeline = RecordingPipeline()
    publisher = FakePublishClient()
    service = UploadService(
        uploads=uploads,
        files=AudioFileRepository(session_factory),
        plans=PlanPolicy(session_factory, uploads),
        token_store=token_store or FakeTokenStore(make_credential()),  # type: ignore[arg-type]
        pipeline=pipeline,  # type: ignore[arg-type]
        publish_client=publisher,
        hold_scheduled_uploads=hold_scheduled_uploads,
        clock=lambda: NOW,
    )
    return service, pipeline, publisher


def request(**overrides) -> UploadRequest:
    values = {"owner_id": "user-1", "file_id": "file-mp3", "title": "  <b>Demo Track</b> "}
    values.update(overrides)
    return UploadRequest(**values)


@pytest.mark.asyncio
async def test_create_upload_sanitizes_and_submits(session_factory) -> None:
    service, pipeline, _ = build_service(session_factory)

    record = await service.create_upload(request(tags=[" lofi ", "<x>", ""], thumbnail_url="https://cdn.test/c.png"))

    assert record.title == "bDemo Track/b"
    assert record.tags == ["lofi", "x"]
    assert record.visibility is Visibility.PUBLIC
    assert record.status is UploadStatus.PENDING
    assert pipeline.submitted == [record.id]


@pytest.mark.asyncio
async def test_scheduled_upload_can_be_held(session_factory) -> None:
    service, pipeline, _ = build_service(session_factory, hold_scheduled_uploads=True)

    record = await service.create_upload(request(scheduled_at="2026-03-11T10:00:00Z"))

    assert record.scheduled_at == datetime(2026, 3, 11, 10, 0, 0)
    assert pipeline.submitted == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"title": "   "}, "Title is required"),
        ({"title": "x" * 101}, "100 characters"),
        ({"scheduled_at": "2020-01-01T00:00:00Z"}, "future"),
        ({"scheduled_at": "tomorrow"}, "Invalid scheduled date"),
        ({"thumbnail_url": "ftp://cdn.test/c.png"}, "thumbnail"),
        ({"visibility": "secret"}, "visibility"),
    ],
)
async def test_invalid_requests_are_rejected(session_factory, overrides, message) -> None:
    service, pipeline, _ = build_service(session_factory)

    with pytest.raises(InvalidRequestError, match=message):
        await service.create_upload(request(**overrides))

    assert pipeline.submitted == []


@pytest.mark.asyncio
async def test_missing_credentials_reject_intake(session_factory) -> None:
    service, _, _ = build_service(session_factory, token_store=FakeTokenStore(None))

    with pytest.raises(CredentialsMissingError):
        await service.create_upload(request())


@pytest.mark.asyncio
async def test_revoked_credentials_reject_intake(session_factory) -> None:
    store = FakeTokenStore(make_credential(), error=ReauthorizationRequiredError("expired"))
    service, _, _ = build_service(session_factory, token_store=store)

    with pytest.raises(ReauthorizationRequiredError):
        await service.create_upload(request())


@pytest.mark.asyncio
async def test_plan_limit_and_formats(session_factory) -> None:
    service, _, _ = build_service(session_factory)

    with pytest.raises(FormatNotAllowedError):
        await service.create_upload(request(file_id="file-wav"))
    with pytest.raises(NotFoundError):
        await service.create_upload(request(file_id="file-other"))

    for _ in range(4):
        await service.create_upload(request())
    with pytest.raises(PlanLimitExceededError):
        await service.create_upload(request())


@pytest.mark.asyncio
async def test_pro_plan_allows_wav_without_limit(session_factory) -> None:
    service, _, _ = build_service(session_factory, plan="pro")

    for _ in range(6):
        record = await service.create_upload(request(file_id="file-wav"))

    assert record.file_id == "file-wav"
    assert service.get_limits("user-1").remaining is None


@pytest.mark.asyncio
async def test_update_uploaded_record_updates_remote(session_factory) -> None:
    service, _, publisher = build_service(session_factory)
    record = service.uploads.create(NewUpload(owner_id="user-1", file_id="file-mp3", title="Old"), now=NOW)
    claimed = service.uploads.claim(record.id, now=NOW, stale_before=NOW)
    service.uploads.mark_uploaded(
        record.id, claim_token=claimed.claim_token, remote_video_id="yt-9", now=NOW
    )

    updated = await service.update_upload(record.id, "user-1", UploadChanges(title="New <title>"))

    assert updated.title == "New title"
    assert publisher.updated[0][0] == "yt-9"
    assert publisher.updated[0][1].title == "New title"


@pytest.mark.asyncio
async def test_owner_checks_and_retry(session_factory) -> None:
    service, pipeline, _ = build_service(session_factory)
    record = service.uploads.create(NewUpload(owner_id="user-1", file_id="file-mp3", title="T"), now=NOW)

    with pytest.raises(UnauthorizedError):
        service.set_archived(record.id, "user-2", True)
    with pytest.raises(InvalidRequestError):
        await service.retry_upload(record.id, "user-1")

    claimed = service.uploads.claim(record.id, now=NOW, stale_before=NOW)
    service.uploads.mark_failed(record.id, claim_token=claimed.claim_token, message="boom", now=NOW)
    retried = await service.retry_upload(record.id, "user-1")

    assert retried.status is UploadStatus.PENDING
    assert pipeline.submitted == [record.id]
    assert service.set_archived(record.id, "user-1", True).archived is True
