from datetime import datetime, timedelta

import pytest

from src.audiocast.db.db_models import UploadModel
from src.audiocast.exceptions import NotFoundError
from src.audiocast.uploads.upload_models import NewUpload, UploadChanges, UploadStatus, Visibility
from src.audiocast.uploads.upload_repository import UploadRepository


def _new(**overrides) -> NewUpload:
    values = {"owner_id": "user-1", "file_id": "file-1", "title": "Demo Track"}
    values.update(overrides)
    return NewUpload(**values)


def test_create_stores_pending_record(session_factory) -> None:
    repo = UploadRepository(session_factory)

    record = repo.create(_new(tags=["lofi", "beats"], visibility=Visibility.UNLISTED))

    with session_factory() as session:
        row = session.get(UploadModel, record.id)
        assert row is not None
        assert row.status == "pending"
        assert row.tags == ["lofi", "beats"]
        assert row.visibility == "unlisted"
        assert row.remote_video_id is None


def test_claim_is_exclusive(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()

    first = repo.claim(record.id, now=now, stale_before=now - timedelta(minutes=10))
    second = repo.claim(record.id, now=now, stale_before=now - timedelta(minutes=10))

    assert first is not None
    assert first.status is UploadStatus.PROCESSING
    assert second is None


def test_claim_takes_over_stale_processing(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    started = datetime.utcnow() - timedelta(minutes=30)
    repo.claim(record.id, now=started, stale_before=started)

    now = datetime.utcnow()
    reclaimed = repo.claim(record.id, now=now, stale_before=now - timedelta(minutes=10))

    assert reclaimed is not None
    assert reclaimed.updated_at == now


def test_claim_never_touches_terminal_records(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()
    claimed = repo.claim(record.id, now=now, stale_before=now)
    repo.mark_uploaded(record.id, claim_token=claimed.claim_token, remote_video_id="abc", now=now)

    later = now + timedelta(hours=1)
    assert repo.claim(record.id, now=later, stale_before=later) is None


def test_list_stale_uses_staleness_window(session_factory) -> None:
    repo = UploadRepository(session_factory)
    old = repo.create(_new())
    fresh = repo.create(_new())
    now = datetime.utcnow()
    repo.claim(old.id, now=now - timedelta(minutes=11), stale_before=now)
    repo.claim(fresh.id, now=now - timedelta(minutes=2), stale_before=now)

    stale = repo.list_stale(stale_before=now - timedelta(minutes=10), limit=10)

    assert [record.id for record in stale] == [old.id]


def test_list_ready_filters_future_schedules(session_factory) -> None:
    repo = UploadRepository(session_factory)
    now = datetime.utcnow()
    immediate = repo.create(_new(), now=now - timedelta(minutes=3))
    due = repo.create(_new(scheduled_at=now - timedelta(minutes=1)), now=now - timedelta(minutes=2))
    repo.create(_new(scheduled_at=now + timedelta(hours=2)), now=now - timedelta(minutes=1))

    ready = repo.list_ready(now=now, limit=10)

    assert [record.id for record in ready] == [immediate.id, due.id]


def test_only_uploaded_records_carry_remote_id(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()
    claimed = repo.claim(record.id, now=now, stale_before=now)

    assert claimed.claim_token is not None
    assert claimed.remote_video_id is None

    uploaded = repo.mark_uploaded(
        record.id, claim_token=claimed.claim_token, remote_video_id="yt-1", now=now
    )

    assert uploaded.status is UploadStatus.UPLOADED
    assert uploaded.remote_video_id == "yt-1"
    assert uploaded.claim_token is None


def test_terminal_records_reject_late_writes(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()
    claimed = repo.claim(record.id, now=now, stale_before=now)
    repo.mark_uploaded(record.id, claim_token=claimed.claim_token, remote_video_id="yt-1", now=now)

    late = repo.mark_failed(record.id, claim_token=claimed.claim_token, message="late failure", now=now)

    assert late is None
    current = repo.get(record.id)
    assert current.status is UploadStatus.UPLOADED
    assert current.remote_video_id == "yt-1"
    assert current.error_message is None


def test_takeover_invalidates_previous_claim(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    started = datetime.utcnow() - timedelta(minutes=30)
    first = repo.claim(record.id, now=started, stale_before=started)
    now = datetime.utcnow()
    second = repo.claim(record.id, now=now, stale_before=now - timedelta(minutes=10))

    assert second.claim_token != first.claim_token
    assert repo.touch(record.id, claim_token=first.claim_token, now=now) is False
    assert repo.mark_failed(record.id, claim_token=first.claim_token, message="old worker", now=now) is None
    assert repo.touch(record.id, claim_token=second.claim_token, now=now) is True
    assert repo.get(record.id).status is UploadStatus.PROCESSING


def test_touch_keeps_claim_out_of_stale_list(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()
    claimed = repo.claim(record.id, now=now - timedelta(minutes=11), stale_before=now)

    repo.touch(record.id, claim_token=claimed.claim_token, now=now)

    assert repo.list_stale(stale_before=now - timedelta(minutes=10), limit=10) == []



def test_reset_failed_only_applies_to_failed(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()

    assert repo.reset_failed(record.id, now=now) is False

    claimed = repo.claim(record.id, now=now, stale_before=now)
    repo.mark_failed(record.id, claim_token=claimed.claim_token, message="boom", now=now)

    assert repo.reset_failed(record.id, now=now) is True
    reset = repo.get(record.id)
    assert reset.status is UploadStatus.PENDING
    assert reset.error_message is None


def test_update_archive_and_delete(session_factory) -> None:
    repo = UploadRepository(session_factory)
    record = repo.create(_new())
    now = datetime.utcnow()

    updated = repo.update_metadata(
        record.id, UploadChanges(title="New title", tags=["a"]), now=now
    )
    repo.set_archived(record.id, archived=True, now=now)

    assert updated.title == "New title"
    assert updated.tags == ["a"]
    assert repo.list_for_owner("user-1") == []
    assert [item.id for item in repo.list_for_owner("user-1", include_archived=True)] == [record.id]
    assert repo.delete(record.id) is True
    assert repo.delete(record.id) is False
    with pytest.raises(NotFoundError):
        repo.get(record.id)


def test_count_created_since(session_factory) -> None:
    repo = UploadRepository(session_factory)
    now = datetime.utcnow()
    repo.create(_new(), now=now - timedelta(days=40))
    repo.create(_new(), now=now - timedelta(days=3))
    repo.create(_new(owner_id="user-2"), now=now)

    assert repo.count_created_since("user-1", now - timedelta(days=30)) == 1
    assert repo.first_created_at("user-1") == now - timedelta(days=40)
