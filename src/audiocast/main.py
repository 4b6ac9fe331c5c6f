"""FastAPI application entry point.

Run with ``uvicorn src.audiocast.main:create_app --factory``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig, load_config
from .dependencies import include_routers
from .lifecycle import SweepScheduler
from .logging import configure_logging
from .security.rate_limit import rate_limited


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    configure_logging()
    cfg = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        scheduler: SweepScheduler | None = None
        if cfg.settings.sweep_enabled:
            scheduler = SweepScheduler(
                app.state.pipeline,
                interval_seconds=cfg.settings.sweep_interval_seconds,
            )
            scheduler.start()
        app.state.sweep_scheduler = scheduler
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            else:
                await app.state.pipeline.aclose()

    app = FastAPI(title="Audiocast", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    include_routers(app, cfg)

    @app.get("/health", dependencies=[Depends(rate_limited("health"))])
    def health() -> dict:
        return {"status": "ok", "timestamp": f"{datetime.utcnow().isoformat()}Z"}

    return app
