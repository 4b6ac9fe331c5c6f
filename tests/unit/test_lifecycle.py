from __future__ import annotations

import asyncio

import pytest

from src.audiocast.lifecycle import SweepScheduler, run_periodic_sweep
from src.audiocast.pipeline.upload_pipeline import SweepReport


class CountingPipeline:
    def __init__(self, *, fail_first: bool = False) -> None:
        self.passes = 0
        self.closed = False
        self.fail_first = fail_first

    async def process_pending(self) -> SweepReport:
        self.passes += 1
        if self.fail_first and self.passes == 1:
            raise RuntimeError("database unavailable")
        return SweepReport(candidates=["u-1"], uploaded=["u-1"])

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_scheduler_runs_immediately_and_stops_cleanly() -> None:
    pipeline = CountingPipeline()
    scheduler = SweepScheduler(pipeline, interval_seconds=60)  # type: ignore[arg-type]

    scheduler.start()
    await asyncio.sleep(0.05)
    assert scheduler.running is True

    await scheduler.stop(timeout=1.0)

    assert pipeline.passes == 1
    assert pipeline.closed is True
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_failed_pass_does_not_stop_the_loop() -> None:
    pipeline = CountingPipeline(fail_first=True)
    shutdown = asyncio.Event()

    async def stop_after_two_passes() -> None:
        while pipeline.passes < 2:
            await asyncio.sleep(0.01)
        shutdown.set()

    stopper = asyncio.create_task(stop_after_two_passes())
    # The interval is clamped to one second, so the second pass follows quickly.
    await asyncio.wait_for(
        run_periodic_sweep(pipeline=pipeline, shutdown_event=shutdown, interval_seconds=0),  # type: ignore[arg-type]
        timeout=5,
    )
    await stopper

    assert pipeline.passes == 2


@pytest.mark.asyncio
async def test_stop_without_start_is_noop() -> None:
    pipeline = CountingPipeline()
    scheduler = SweepScheduler(pipeline)  # type: ignore[arg-type]

    await scheduler.stop()

    assert pipeline.closed is False
