"""Application configuration builder.

Values come from the environment (``.env.local`` and ``.env`` are loaded
first). :class:`Settings` holds the raw knobs; :func:`load_config` turns them
into an :class:`AppConfig` with a ready engine and session factory.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from tempfile import gettempdir

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.db_init import init_db


def _default_work_dir() -> Path:
    return Path(gettempdir()) / "youtube-videos"


class Settings(BaseSettings):
    """Environment backed settings."""

    model_config = SettingsConfigDict(extra="ignore")

    database_url: str = Field(
        default="sqlite:///audiocast.db",
        description="SQLAlchemy URL of the primary database.",
    )
    google_client_id: str | None = Field(default=None, description="OAuth client id.")
    google_client_secret: str | None = Field(default=None, description="OAuth client secret.")
    google_redirect_uri: str = Field(
        default="http://localhost:5173/youtube/callback",
        description="Redirect URI registered for the OAuth client.",
    )
    storage_api_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the storage service issuing signed download URLs.",
    )
    frontend_url: str = Field(default="http://localhost:5173")
    allowed_origins: str = Field(
        default="",
        description="Comma separated extra CORS origins.",
    )
    ffmpeg_path: str | None = Field(default=None)
    ffmpeg_binary: str | None = Field(default=None)
    work_dir: Path = Field(default_factory=_default_work_dir)

    sweep_interval_seconds: float = Field(default=30.0, ge=1.0)
    sweep_batch_size: int = Field(default=10, ge=1)
    sweep_item_delay_seconds: float = Field(default=2.0, ge=0.0)
    staleness_window_minutes: int = Field(
        default=10,
        ge=1,
        description="Minutes after which a processing upload counts as abandoned.",
    )
    token_refresh_margin_minutes: int = Field(
        default=30,
        ge=5,
        description="Refresh access tokens expiring within this many minutes.",
    )
    audio_download_timeout_seconds: float = Field(default=300.0, gt=0)
    thumbnail_download_timeout_seconds: float = Field(default=30.0, gt=0)
    ffmpeg_timeout_seconds: float = Field(default=1800.0, gt=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    upload_timeout_seconds: float = Field(default=1800.0, gt=0)
    hold_scheduled_uploads: bool = Field(
        default=False,
        description="Skip the immediate attempt for uploads scheduled in the future.",
    )
    sweep_enabled: bool = Field(default=True)

    @property
    def cors_origins(self) -> list[str]:
        origins = [self.frontend_url]
        origins.extend(
            item.strip() for item in self.allowed_origins.split(",") if item.strip()
        )
        return list(dict.fromkeys(origins))


@dataclass(slots=True)
class AppConfig:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]

    @property
    def staleness_window(self) -> timedelta:
        return timedelta(minutes=self.settings.staleness_window_minutes)

    @property
    def refresh_margin(self) -> timedelta:
        return timedelta(minutes=self.settings.token_refresh_margin_minutes)


def load_config(settings: Settings | None = None) -> AppConfig:
    """Load configuration from environment (SQLite by default)."""
    if settings is None:
        load_dotenv(".env.local")
        load_dotenv(".env")
        settings = Settings()

    settings.work_dir.mkdir(parents=True, exist_ok=True)

    engine = create_engine(settings.database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)
    init_db(engine)

    return AppConfig(settings=settings, engine=engine, session_factory=session_factory)
