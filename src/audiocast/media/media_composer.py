"""Static-image video composition through ffmpeg."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..exceptions import CompositionFailedError, CompositionTimeoutError

logger = logging.getLogger(__name__)

FFMPEG_FALLBACK_PATHS = (
    "/usr/bin/ffmpeg",
    "/usr/local/bin/ffmpeg",
    "/opt/homebrew/bin/ffmpeg",
    "/bin/ffmpeg",
)
_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp"}


def resolve_ffmpeg_binary(configured: Iterable[str | None] = ()) -> str | None:
    """Return the first usable ffmpeg executable, or ``None``."""
    candidates = [item for item in configured if item]
    candidates.append("ffmpeg")
    candidates.extend(FFMPEG_FALLBACK_PATHS)
    for candidate in candidates:
        found = shutil.which(candidate)
        if found:
            return found
    return None


@dataclass(slots=True)
class ComposedVideo:
    path: Path
    size_bytes: int


@dataclass(slots=True)
class MediaComposer:
    """Download audio plus optional cover and mux them into a 16:9 MP4.

    Intermediate downloads never outlive :meth:`compose`. The returned video
    belongs to the caller, who releases it with :meth:`discard`.
    """

    work_dir: Path
    ffmpeg_binary: str = "ffmpeg"
    audio_timeout_seconds: float = 300.0
    thumbnail_timeout_seconds: float = 30.0
    ffmpeg_timeout_seconds: float = 1800.0
    width: int = 1280
    height: int = 720
    transport: httpx.AsyncBaseTransport | None = None
    log: logging.Logger = field(default_factory=lambda: logger)

    async def compose(self, audio_url: str, thumbnail_url: str | None) -> ComposedVideo:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        audio_path = self.work_dir / f"{token}-audio"
        image_path: Path | None = None
        output_path = self.work_dir / f"{token}.mp4"
        intermediates: list[Path] = [audio_path]
        succeeded = False

        try:
            try:
                await self._download(audio_url, audio_path, timeout=self.audio_timeout_seconds)
            except (httpx.HTTPError, OSError) as exc:
                raise CompositionFailedError(f"Failed to download audio file: {exc}") from exc

            if thumbnail_url:
                candidate = self.work_dir / f"{token}-cover{_image_extension(thumbnail_url)}"
                intermediates.append(candidate)
                try:
                    await self._download(
                        thumbnail_url, candidate, timeout=self.thumbnail_timeout_seconds
                    )
                except (httpx.HTTPError, OSError) as exc:
                    self.log.warning(
                        "composer.thumbnail.download_failed",
                        extra={"error": str(exc)},
                    )
                else:
                    image_path = candidate

            command = self.build_command(audio_path, image_path, output_path)
            await self._run_ffmpeg(command)

            if not output_path.exists():
                raise CompositionFailedError("ffmpeg finished without producing a video")
            size = output_path.stat().st_size
            self.log.info(
                "composer.compose.success",
                extra={"output": str(output_path), "size_bytes": size},
            )
            succeeded = True
            return ComposedVideo(path=output_path, size_bytes=size)
        finally:
            for path in intermediates:
                _remove_single_path(path, log=self.log)
            if not succeeded:
                _remove_single_path(output_path, log=self.log)

    def build_command(self, audio_path: Path, image_path: Path | None, output_path: Path) -> list[str]:
        size = f"{self.width}x{self.height}"
        command = [self.ffmpeg_binary, "-y", "-i", str(audio_path)]
        if image_path is not None:
            command += ["-loop", "1", "-framerate", "1", "-i", str(image_path)]
        else:
            command += ["-f", "lavfi", "-i", f"color=c=black:s={size}:r=1"]
        command += [
            "-map", "0:a",
            "-map", "1:v",
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-pix_fmt", "yuv420p",
            "-r", "1",
            "-threads", "2",
            "-movflags", "+faststart",
            "-vf",
            (
                f"scale={self.width}:{self.height}:force_original_aspect_ratio=decrease,"
                f"pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2"
            ),
            "-aspect", "16:9",
            "-c:a", "aac",
            "-b:a", "192k",
            "-shortest",
            "-max_muxing_queue_size", "1024",
            str(output_path),
        ]
        return command

    def discard(self, video: ComposedVideo | Path) -> None:
        path = video.path if isinstance(video, ComposedVideo) else video
        _remove_single_path(path, log=self.log)

    async def _download(self, url: str, target: Path, *, timeout: float) -> None:
        async with httpx.AsyncClient(
            timeout=timeout, transport=self.transport, follow_redirects=True
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with target.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)

    async def _run_ffmpeg(self, command: list[str]) -> None:
        self.log.info("composer.ffmpeg.start", extra={"command": " ".join(command)})
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CompositionFailedError(f"Failed to start ffmpeg: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.ffmpeg_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            _kill(process)
            await process.wait()
            self.log.error(
                "composer.ffmpeg.timeout",
                extra={"timeout_seconds": self.ffmpeg_timeout_seconds},
            )
            raise CompositionTimeoutError(
                f"Video processing timed out after {self.ffmpeg_timeout_seconds:.0f} seconds"
            ) from exc
        except asyncio.CancelledError:
            _kill(process)
            await asyncio.shield(process.wait())
            raise

        if process.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="replace").strip().splitlines()[-5:]
            self.log.error(
                "composer.ffmpeg.failed",
                extra={"returncode": process.returncode, "stderr_tail": tail},
            )
            detail = tail[-1] if tail else f"exit code {process.returncode}"
            raise CompositionFailedError(f"Video processing failed: {detail}")


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


def _image_extension(url: str) -> str:
    suffix = os.path.splitext(urlparse(url).path)[1].lower()
    return suffix if suffix in _IMAGE_EXTENSIONS else ".jpg"


def _remove_single_path(path: Path, *, log: logging.Logger) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log.warning("composer.cleanup.failed", extra={"path": str(path), "error": str(exc)})
