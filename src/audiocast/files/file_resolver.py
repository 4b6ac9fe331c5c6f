"""Lookup of audio assets and resolution of fetchable URLs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from ..db.db_models import AudioFileModel
from ..exceptions import SourceUnavailableError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AudioAsset:
    id: str
    owner_id: str
    name: str
    format: str | None
    cdn_url: str | None
    storage_key: str | None
    size_bytes: int | None = None


class AudioFileRepository:
    """Read-only access to the ``audio_files`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, file_id: str) -> AudioAsset | None:
        with self._session_factory() as session:
            model = session.get(AudioFileModel, file_id)
            if model is None:
                return None
            return AudioAsset(
                id=model.id,
                owner_id=model.owner_id,
                name=model.name,
                format=model.format,
                cdn_url=model.cdn_url,
                storage_key=model.storage_key,
                size_bytes=model.size_bytes,
            )


@dataclass(slots=True)
class FileResolver:
    """Turn an asset id into a URL the composer can download."""

    files: AudioFileRepository
    storage_api_url: str
    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    log: logging.Logger = field(default_factory=lambda: logger)

    async def resolve_audio_url(self, asset_id: str, owner_id: str) -> str:
        asset = await asyncio.to_thread(self.files.get, asset_id)
        if asset is None:
            raise SourceUnavailableError("File not found")
        if asset.cdn_url:
            return asset.cdn_url
        if asset.storage_key:
            return await self._signed_url(asset.storage_key, owner_id)
        raise SourceUnavailableError("No audio URL or storage key available for this file")

    async def _signed_url(self, storage_key: str, owner_id: str) -> str:
        url = f"{self.storage_api_url.rstrip('/')}/storage/download-url"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(url, json={"objectKey": storage_key, "userId": owner_id})
        except httpx.HTTPError as exc:
            raise SourceUnavailableError(f"Failed to get signed URL: {exc}") from exc

        if response.status_code >= 400:
            self.log.error(
                "file_resolver.signed_url.failed",
                extra={"status_code": response.status_code, "body_preview": response.text[:300]},
            )
            raise SourceUnavailableError(f"Failed to get signed URL: HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceUnavailableError("Storage service returned invalid JSON") from exc
        download_url = ((payload or {}).get("data") or {}).get("downloadUrl")
        if not download_url:
            raise SourceUnavailableError("Storage service returned no download URL")
        return download_url
