"""Dependency wiring helpers."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from .config import AppConfig
from .credentials.credential_repository import CredentialRepository
from .credentials.oauth_api import router as oauth_router
from .credentials.oauth_client import GoogleOAuthClient
from .credentials.token_store import TokenStore
from .files.file_resolver import AudioFileRepository, FileResolver
from .media.media_composer import MediaComposer, resolve_ffmpeg_binary
from .pipeline.upload_pipeline import UploadPipeline
from .plans.plan_policy import PlanPolicy
from .publishing.publishing_youtube import YouTubePublishClient
from .security.rate_limit import build_rate_limiters
from .uploads.upload_api import router as uploads_router
from .uploads.upload_repository import UploadRepository
from .uploads.upload_service import UploadService

logger = logging.getLogger(__name__)


def build_pipeline(config: AppConfig) -> UploadPipeline:
    """Construct the pipeline and its collaborators from configuration."""
    settings = config.settings
    uploads = UploadRepository(config.session_factory)

    oauth_client = GoogleOAuthClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
        timeout_seconds=settings.http_timeout_seconds,
    )
    token_store = TokenStore(
        repo=CredentialRepository(config.session_factory),
        oauth_client=oauth_client,
        refresh_margin=config.refresh_margin,
    )
    file_resolver = FileResolver(
        files=AudioFileRepository(config.session_factory),
        storage_api_url=settings.storage_api_url,
        timeout_seconds=settings.http_timeout_seconds,
    )

    ffmpeg_binary = resolve_ffmpeg_binary([settings.ffmpeg_path, settings.ffmpeg_binary])
    if ffmpeg_binary is None:
        logger.warning("composer.ffmpeg.missing")
    composer = MediaComposer(
        work_dir=settings.work_dir,
        ffmpeg_binary=ffmpeg_binary or "ffmpeg",
        audio_timeout_seconds=settings.audio_download_timeout_seconds,
        thumbnail_timeout_seconds=settings.thumbnail_download_timeout_seconds,
        ffmpeg_timeout_seconds=settings.ffmpeg_timeout_seconds,
    )
    publish_client = YouTubePublishClient(
        timeout_seconds=settings.http_timeout_seconds,
        upload_timeout_seconds=settings.upload_timeout_seconds,
        thumbnail_timeout_seconds=settings.thumbnail_download_timeout_seconds,
    )

    return UploadPipeline(
        uploads=uploads,
        token_store=token_store,
        file_resolver=file_resolver,
        composer=composer,
        publish_client=publish_client,
        staleness_window=config.staleness_window,
        sweep_batch_size=settings.sweep_batch_size,
        sweep_item_delay_seconds=settings.sweep_item_delay_seconds,
    )


def include_routers(app: FastAPI, config: AppConfig, pipeline: UploadPipeline | None = None) -> None:
    """Mount module routers and attach services."""
    pipeline = pipeline or build_pipeline(config)
    upload_service = UploadService(
        uploads=pipeline.uploads,
        files=pipeline.file_resolver.files,
        plans=PlanPolicy(config.session_factory, pipeline.uploads),
        token_store=pipeline.token_store,
        pipeline=pipeline,
        publish_client=pipeline.publish_client,
        hold_scheduled_uploads=config.settings.hold_scheduled_uploads,
    )

    app.state.config = config
    app.state.pipeline = pipeline
    app.state.upload_service = upload_service
    app.state.token_store = pipeline.token_store
    app.state.oauth_client = pipeline.token_store.oauth_client
    app.state.rate_limiters = build_rate_limiters()

    app.include_router(uploads_router)
    app.include_router(oauth_router)
