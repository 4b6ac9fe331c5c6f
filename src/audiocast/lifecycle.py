"""Lifecycle helpers wiring the upload sweep into FastAPI startup."""

from __future__ import annotations

import asyncio
import logging

from .pipeline.upload_pipeline import UploadPipeline


logger = logging.getLogger(__name__)


async def run_periodic_sweep(
    *,
    pipeline: UploadPipeline,
    shutdown_event: asyncio.Event,
    interval_seconds: float = 30.0,
) -> None:
    """Run a sweep right away and then every ``interval_seconds`` until shutdown."""

    interval = max(1.0, float(interval_seconds))
    while not shutdown_event.is_set():
        try:
            report = await pipeline.process_pending()
        except Exception:
            logger.exception("sweep.iteration_failed")
        else:
            if report.candidates:
                logger.info(
                    "sweep.iteration_done",
                    extra={
                        "candidates": len(report.candidates),
                        "uploaded": len(report.uploaded),
                        "failed": len(report.failed),
                    },
                )
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


class SweepScheduler:
    """Owns the background sweep task with explicit start/stop."""

    def __init__(self, pipeline: UploadPipeline, *, interval_seconds: float = 30.0) -> None:
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown = asyncio.Event()
        self._task = asyncio.create_task(
            run_periodic_sweep(
                pipeline=self.pipeline,
                shutdown_event=self._shutdown,
                interval_seconds=self.interval_seconds,
            )
        )
        logger.info("sweep.started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self, *, timeout: float = 10.0) -> None:
        """Signal shutdown, wait for the current pass, cancel if it overruns."""
        task = self._task
        if task is None:
            return
        self._shutdown.set()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
        await self.pipeline.aclose()
        logger.info("sweep.stopped")
