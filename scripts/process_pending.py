"""Cron entry point running one upload sweep outside the web process."""

from __future__ import annotations

import argparse
import asyncio
import sys

from src.audiocast.config import load_config
from src.audiocast.dependencies import build_pipeline
from src.audiocast.logging import configure_logging
from src.audiocast.pipeline.upload_pipeline import SweepReport


async def perform_sweep(*, dry_run: bool) -> SweepReport:
    """Run one sweep, or only list its candidates when ``dry_run`` is set."""
    config = load_config()
    pipeline = build_pipeline(config)
    if dry_run:
        candidates = await asyncio.to_thread(pipeline.find_candidates, pipeline.now())
        return SweepReport(candidates=[record.id for record in candidates])
    return await pipeline.process_pending()


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process pending and abandoned uploads once.")
    parser.add_argument("--dry-run", action="store_true", help="Only list candidate uploads.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or [])
    configure_logging()
    try:
        report = asyncio.run(perform_sweep(dry_run=args.dry_run))
    except Exception as exc:
        print(f"sweep failed: {exc}", file=sys.stderr)
        return 2

    if args.dry_run:
        print(f"sweep dry-run, candidates={len(report.candidates)}", file=sys.stdout)
    else:
        print(
            f"sweep done, candidates={len(report.candidates)}, "
            f"uploaded={len(report.uploaded)}, failed={len(report.failed)}",
            file=sys.stdout,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
