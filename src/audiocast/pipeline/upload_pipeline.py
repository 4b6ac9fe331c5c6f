"""Upload lifecycle orchestration.

One record moves ``pending -> processing -> uploaded | failed`` through
:meth:`UploadPipeline.advance`. Both the immediate attempt fired at intake
and the periodic sweep end up there; the atomic claim in the repository
makes a second concurrent call a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

from ..credentials.token_store import TokenStore
from ..exceptions import (
    CompositionFailedError,
    CredentialsMissingError,
    NotFoundError,
    PublishFailedError,
    RepositoryError,
    UnauthorizedError,
    describe_failure,
)
from ..files.file_resolver import FileResolver
from ..media.media_composer import ComposedVideo, MediaComposer
from ..publishing.publishing_base import PublishClient, VideoMetadata, prepare_metadata
from ..uploads.upload_models import UploadRecord, UploadStatus
from ..uploads.upload_repository import UploadRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREDENTIALS_MISSING_MESSAGE = (
    "User has not connected YouTube account. Please connect your YouTube account first."
)


@dataclass(slots=True)
class SweepReport:
    """Outcome of one :meth:`UploadPipeline.process_pending` pass."""

    candidates: list[str] = field(default_factory=list)
    uploaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "candidates": len(self.candidates),
            "uploaded": list(self.uploaded),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
        }


class UploadPipeline:
    """Drive upload records through composition and publishing."""

    def __init__(
        self,
        *,
        uploads: UploadRepository,
        token_store: TokenStore,
        file_resolver: FileResolver,
        composer: MediaComposer,
        publish_client: PublishClient,
        staleness_window: timedelta = timedelta(minutes=10),
        sweep_batch_size: int = 10,
        sweep_item_delay_seconds: float = 2.0,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.uploads = uploads
        self.token_store = token_store
        self.file_resolver = file_resolver
        self.composer = composer
        self.publish_client = publish_client
        self.staleness_window = staleness_window
        self.sweep_batch_size = max(1, sweep_batch_size)
        self.sweep_item_delay_seconds = max(0.0, sweep_item_delay_seconds)
        self._clock = clock or datetime.utcnow
        self._sleep = sleep or asyncio.sleep
        self._inflight: set[asyncio.Task[Any]] = set()

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Single record
    # ------------------------------------------------------------------
    async def advance(self, upload_id: str) -> UploadRecord:
        """Process one record; re-raises the failure after recording it.

        While the claim is held a background task refreshes ``updated_at``
        every third of the staleness window, so a slow compose or upload is
        never mistaken for an abandoned one. If a takeover happens anyway the
        terminal write is rejected and the current record is returned.
        """
        record = await self._run_sync(self.uploads.find, upload_id)
        if record is None:
            raise NotFoundError(f"upload '{upload_id}' not found")
        if record.status in (UploadStatus.UPLOADED, UploadStatus.FAILED):
            logger.info(
                "pipeline.advance.terminal",
                extra={"upload_id": upload_id, "status": record.status.value},
            )
            return record

        now = self._clock()
        claimed = await self._run_sync(
            self.uploads.claim,
            upload_id,
            now=now,
            stale_before=now - self.staleness_window,
        )
        if claimed is None or claimed.claim_token is None:
            logger.info("pipeline.advance.not_claimed", extra={"upload_id": upload_id})
            return await self._run_sync(self.uploads.get, upload_id)

        logger.info(
            "pipeline.advance.claimed",
            extra={"upload_id": upload_id, "owner_id": claimed.owner_id},
        )
        token = claimed.claim_token
        keepalive = asyncio.create_task(self._keep_claim(upload_id, token))
        composed: ComposedVideo | None = None
        try:
            credential = await self.token_store.get_tokens(claimed.owner_id)
            if credential is None:
                raise CredentialsMissingError(CREDENTIALS_MISSING_MESSAGE)

            audio_url = await self.file_resolver.resolve_audio_url(
                claimed.file_id, claimed.owner_id
            )

            try:
                composed = await self.composer.compose(audio_url, claimed.thumbnail_url)
            except CompositionFailedError:
                raise
            except Exception as exc:
                raise CompositionFailedError(f"Video processing failed: {exc}") from exc

            metadata = prepare_metadata(
                VideoMetadata(
                    title=claimed.title,
                    description=claimed.description or "",
                    tags=list(claimed.tags),
                    visibility=claimed.visibility,
                    publish_at=claimed.scheduled_at,
                ),
                now=self._clock(),
            )
            try:
                result = await self.publish_client.publish(
                    credential.access_token, composed.path, composed.size_bytes, metadata
                )
            except PublishFailedError:
                raise
            except Exception as exc:
                raise PublishFailedError(f"YouTube upload failed: {exc}") from exc
        except Exception as exc:
            message = describe_failure(exc)
            logger.error(
                "pipeline.advance.failed",
                extra={
                    "upload_id": upload_id,
                    "error_type": exc.__class__.__name__,
                    "error": message,
                },
            )
            await _stop(keepalive)
            failed = await self._run_sync(
                self.uploads.mark_failed,
                upload_id,
                claim_token=token,
                message=message,
                now=self._clock(),
            )
            if failed is None:
                return await self._claim_lost(upload_id, remote_id=None)
            raise
        finally:
            await _stop(keepalive)
            if composed is not None:
                self.composer.discard(composed)

        if claimed.thumbnail_url:
            await self.attach_thumbnail_best_effort(
                credential.access_token, result.remote_id, claimed.thumbnail_url
            )

        uploaded = await self._run_sync(
            self.uploads.mark_uploaded,
            upload_id,
            claim_token=token,
            remote_video_id=result.remote_id,
            now=self._clock(),
        )
        if uploaded is None:
            return await self._claim_lost(upload_id, remote_id=result.remote_id)
        logger.info(
            "pipeline.advance.uploaded",
            extra={"upload_id": upload_id, "remote_id": result.remote_id},
        )
        return uploaded

    async def _keep_claim(self, upload_id: str, claim_token: str) -> None:
        interval = max(0.01, self.staleness_window.total_seconds() / 3)
        while True:
            await asyncio.sleep(interval)
            try:
                held = await self._run_sync(
                    self.uploads.touch, upload_id, claim_token=claim_token, now=self._clock()
                )
            except RepositoryError as exc:
                logger.warning(
                    "pipeline.claim.touch_failed",
                    extra={"upload_id": upload_id, "error": str(exc)},
                )
                continue
            if not held:
                logger.warning("pipeline.claim.lost", extra={"upload_id": upload_id})
                return

    async def _claim_lost(self, upload_id: str, *, remote_id: str | None) -> UploadRecord:
        current = await self._run_sync(self.uploads.get, upload_id)
        logger.warning(
            "pipeline.advance.write_rejected",
            extra={
                "upload_id": upload_id,
                "status": current.status.value,
                "orphan_remote_id": remote_id,
            },
        )
        return current

    async def attach_thumbnail_best_effort(
        self, access_token: str, remote_id: str, thumbnail_url: str
    ) -> bool:
        """Set the custom thumbnail; failures are logged and never propagate.

        Channels without verification get ``InsufficientPrivilegeError`` here,
        which is expected and must not fail an otherwise published video.
        """
        try:
            await self.publish_client.attach_thumbnail(access_token, remote_id, thumbnail_url)
        except Exception as exc:
            logger.warning(
                "pipeline.thumbnail.skipped",
                extra={
                    "remote_id": remote_id,
                    "error_type": exc.__class__.__name__,
                    "error": str(exc),
                },
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------
    async def process_pending(self) -> SweepReport:
        """Advance ready and abandoned records one by one."""
        report = SweepReport()
        candidates = await self._run_sync(self.find_candidates, self._clock())
        report.candidates = [record.id for record in candidates]
        if candidates:
            logger.info("pipeline.sweep.start", extra={"candidates": len(candidates)})

        for index, record in enumerate(candidates):
            if index:
                await self._sleep(self.sweep_item_delay_seconds)
            try:
                result = await self.advance(record.id)
            except Exception:
                logger.exception("pipeline.sweep.item_failed", extra={"upload_id": record.id})
                report.failed.append(record.id)
                continue
            if result.status is UploadStatus.UPLOADED:
                report.uploaded.append(record.id)
            else:
                report.skipped.append(record.id)
        return report

    def find_candidates(self, now: datetime) -> list[UploadRecord]:
        ready = self.uploads.list_ready(now=now, limit=self.sweep_batch_size)
        stale = self.uploads.list_stale(
            stale_before=now - self.staleness_window, limit=self.sweep_batch_size
        )
        seen: set[str] = set()
        merged: list[UploadRecord] = []
        for record in [*ready, *stale]:
            if record.id in seen:
                continue
            seen.add(record.id)
            merged.append(record)
        return merged[: self.sweep_batch_size]

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    async def delete(self, upload_id: str, owner_id: str) -> None:
        """Remove the record; the remote video is deleted best-effort first."""
        record = await self._run_sync(self.uploads.find, upload_id)
        if record is None:
            raise NotFoundError("Upload not found")
        if record.owner_id != owner_id:
            raise UnauthorizedError("Unauthorized: You do not own this upload")

        if record.status is UploadStatus.UPLOADED and record.remote_video_id:
            try:
                credential = await self.token_store.get_tokens(owner_id)
                if credential is None:
                    logger.warning(
                        "pipeline.delete.remote_skipped",
                        extra={"upload_id": upload_id, "reason": "credentials_missing"},
                    )
                else:
                    await self.publish_client.delete(
                        credential.access_token, record.remote_video_id
                    )
            except Exception as exc:
                logger.warning(
                    "pipeline.delete.remote_failed",
                    extra={"upload_id": upload_id, "error": str(exc)},
                )

        await self._run_sync(self.uploads.delete, upload_id)
        logger.info("pipeline.delete.done", extra={"upload_id": upload_id})

    # ------------------------------------------------------------------
    # Immediate attempts
    # ------------------------------------------------------------------
    def submit(self, upload_id: str) -> asyncio.Task[Any]:
        """Start :meth:`advance` in the background and keep a handle on it."""
        task = asyncio.create_task(self._advance_logged(upload_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _advance_logged(self, upload_id: str) -> None:
        try:
            await self.advance(upload_id)
        except Exception:
            logger.exception("pipeline.immediate.failed", extra={"upload_id": upload_id})

    async def aclose(self) -> None:
        """Wait for in-flight immediate attempts to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_sync(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)


async def _stop(task: asyncio.Task[Any]) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
