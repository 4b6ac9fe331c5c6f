"""Persistence layer for upload records."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from ..db.db_models import UploadModel
from ..exceptions import NotFoundError, handle_sqlalchemy_errors
from .upload_models import NewUpload, UploadChanges, UploadRecord, UploadStatus, Visibility


class UploadRepository:
    """Manage ``uploads`` rows.

    Every status change goes through a single conditional ``UPDATE`` so two
    workers racing on the same record cannot both win.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(self, new: NewUpload, *, now: datetime | None = None) -> UploadRecord:
        created_at = now or datetime.utcnow()
        model = UploadModel(
            id=str(uuid.uuid4()),
            owner_id=new.owner_id,
            file_id=new.file_id,
            title=new.title,
            description=new.description,
            tags=list(new.tags),
            thumbnail_url=new.thumbnail_url,
            visibility=Visibility(new.visibility).value,
            scheduled_at=new.scheduled_at,
            status=UploadStatus.PENDING.value,
            archived=False,
            created_at=created_at,
            updated_at=created_at,
        )
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            session.add(model)
            session.commit()
            return _to_record(model)

    def find(self, upload_id: str) -> UploadRecord | None:
        with self._session_factory() as session:
            model = session.get(UploadModel, upload_id)
            return _to_record(model) if model is not None else None

    def get(self, upload_id: str) -> UploadRecord:
        record = self.find(upload_id)
        if record is None:
            raise NotFoundError(f"upload '{upload_id}' not found")
        return record

    def list_for_owner(self, owner_id: str, *, include_archived: bool = False) -> list[UploadRecord]:
        stmt = select(UploadModel).where(UploadModel.owner_id == owner_id)
        if not include_archived:
            stmt = stmt.where(UploadModel.archived.is_(False))
        stmt = stmt.order_by(UploadModel.created_at.desc())
        with self._session_factory() as session:
            return [_to_record(model) for model in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------
    def claim(self, upload_id: str, *, now: datetime, stale_before: datetime) -> UploadRecord | None:
        """Flip a pending (or abandoned processing) record to processing.

        Returns ``None`` when another worker holds the record or it already
        reached a terminal state. The returned record carries a fresh
        ``claim_token``; a takeover issues a new token so the previous holder
        can no longer write.
        """
        token = str(uuid.uuid4())
        stmt = (
            update(UploadModel)
            .where(UploadModel.id == upload_id)
            .where(
                or_(
                    UploadModel.status == UploadStatus.PENDING.value,
                    and_(
                        UploadModel.status == UploadStatus.PROCESSING.value,
                        UploadModel.updated_at < stale_before,
                    ),
                )
            )
            .values(
                status=UploadStatus.PROCESSING.value,
                claim_token=token,
                error_message=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            if result.rowcount != 1:
                return None
        return self.get(upload_id)

    def touch(self, upload_id: str, *, claim_token: str, now: datetime) -> bool:
        """Refresh ``updated_at`` of a held claim; ``False`` once it was taken over."""
        stmt = (
            update(UploadModel)
            .where(UploadModel.id == upload_id)
            .where(UploadModel.status == UploadStatus.PROCESSING.value)
            .where(UploadModel.claim_token == claim_token)
            .values(updated_at=now)
            .execution_options(synchronize_session=False)
        )
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def mark_uploaded(
        self, upload_id: str, *, claim_token: str, remote_video_id: str, now: datetime
    ) -> UploadRecord | None:
        return self._transition(
            upload_id,
            claim_token=claim_token,
            now=now,
            status=UploadStatus.UPLOADED,
            remote_video_id=remote_video_id,
            error_message=None,
        )

    def mark_failed(
        self, upload_id: str, *, claim_token: str, message: str, now: datetime
    ) -> UploadRecord | None:
        return self._transition(
            upload_id,
            claim_token=claim_token,
            now=now,
            status=UploadStatus.FAILED,
            remote_video_id=None,
            error_message=message,
        )

    def reset_failed(self, upload_id: str, *, now: datetime) -> bool:
        """Put a failed record back to pending; the only backwards transition."""
        stmt = (
            update(UploadModel)
            .where(UploadModel.id == upload_id)
            .where(UploadModel.status == UploadStatus.FAILED.value)
            .values(status=UploadStatus.PENDING.value, error_message=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def _transition(
        self,
        upload_id: str,
        *,
        claim_token: str,
        now: datetime,
        status: UploadStatus,
        remote_video_id: str | None,
        error_message: str | None,
    ) -> UploadRecord | None:
        """End a run; ``None`` when the claim is no longer held by ``claim_token``."""
        stmt = (
            update(UploadModel)
            .where(UploadModel.id == upload_id)
            .where(UploadModel.status == UploadStatus.PROCESSING.value)
            .where(UploadModel.claim_token == claim_token)
            .values(
                status=status.value,
                claim_token=None,
                remote_video_id=remote_video_id,
                error_message=error_message,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            if result.rowcount != 1:
                return None
        return self.get(upload_id)

    # ------------------------------------------------------------------
    # Sweep queries
    # ------------------------------------------------------------------
    def list_ready(self, *, now: datetime, limit: int) -> list[UploadRecord]:
        """Pending records that are not scheduled for later, oldest first."""
        stmt = (
            select(UploadModel)
            .where(UploadModel.status == UploadStatus.PENDING.value)
            .where(or_(UploadModel.scheduled_at.is_(None), UploadModel.scheduled_at <= now))
            .order_by(UploadModel.created_at.asc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [_to_record(model) for model in session.scalars(stmt)]

    def list_stale(self, *, stale_before: datetime, limit: int) -> list[UploadRecord]:
        stmt = (
            select(UploadModel)
            .where(UploadModel.status == UploadStatus.PROCESSING.value)
            .where(UploadModel.updated_at < stale_before)
            .order_by(UploadModel.updated_at.asc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [_to_record(model) for model in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------
    def update_metadata(self, upload_id: str, changes: UploadChanges, *, now: datetime) -> UploadRecord:
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            model = session.get(UploadModel, upload_id)
            if model is None:
                raise NotFoundError(f"upload '{upload_id}' not found")
            if changes.title is not None:
                model.title = changes.title
            if changes.description is not None:
                model.description = changes.description
            if changes.tags is not None:
                model.tags = list(changes.tags)
            if changes.visibility is not None:
                model.visibility = Visibility(changes.visibility).value
            model.updated_at = now
            session.commit()
            return _to_record(model)

    def set_archived(self, upload_id: str, *, archived: bool, now: datetime) -> UploadRecord:
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            model = session.get(UploadModel, upload_id)
            if model is None:
                raise NotFoundError(f"upload '{upload_id}' not found")
            model.archived = archived
            model.updated_at = now
            session.commit()
            return _to_record(model)

    def delete(self, upload_id: str) -> bool:
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            model = session.get(UploadModel, upload_id)
            if model is None:
                return False
            session.delete(model)
            session.commit()
            return True

    def count_created_since(self, owner_id: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(UploadModel)
            .where(UploadModel.owner_id == owner_id)
            .where(UploadModel.created_at >= since)
        )
        with handle_sqlalchemy_errors(entity="upload"), self._session_factory() as session:
            return int(session.scalar(stmt) or 0)

    def first_created_at(self, owner_id: str) -> datetime | None:
        stmt = select(func.min(UploadModel.created_at)).where(UploadModel.owner_id == owner_id)
        with self._session_factory() as session:
            return session.scalar(stmt)


def _to_record(model: UploadModel) -> UploadRecord:
    return UploadRecord(
        id=model.id,
        owner_id=model.owner_id,
        file_id=model.file_id,
        title=model.title,
        description=model.description,
        tags=list(model.tags or []),
        thumbnail_url=model.thumbnail_url,
        visibility=Visibility(model.visibility),
        scheduled_at=model.scheduled_at,
        status=UploadStatus(model.status),
        remote_video_id=model.remote_video_id,
        error_message=model.error_message,
        archived=bool(model.archived),
        created_at=model.created_at,
        updated_at=model.updated_at,
        claim_token=model.claim_token,
    )
