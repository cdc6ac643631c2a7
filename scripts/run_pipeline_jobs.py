#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from ad_shipper.config import settings
from ad_shipper.pipeline.deps import build_pipeline_deps
from ad_shipper.pipeline.job_runner import JobRunner
from ad_shipper.services.notion_rows import NotionRowsClient


async def _run(args: argparse.Namespace) -> dict[str, int]:
    runner = JobRunner(build_pipeline_deps(), NotionRowsClient.from_settings())
    summary: dict[str, int] = {}
    if args.cleanup:
        summary["stale_failed"] = await runner.cleanup_stale_jobs()
    if not args.skip_discovery:
        summary["discovered"] = len(await runner.discover_jobs())
    summary.update(await runner.run_once(limit=args.limit))
    if args.clear_cache:
        summary["cache_entries_cleared"] = await runner.deps.cache.clear_expired()
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Discover workspace rows and write reviewed copy for queued jobs.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum queued jobs to process")
    parser.add_argument("--skip-discovery", action="store_true")
    parser.add_argument("--cleanup", action="store_true", help="Fail jobs stuck in a non-terminal state")
    parser.add_argument("--clear-cache", action="store_true", help="Delete expired analysis cache entries")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    print(json.dumps(asyncio.run(_run(args)), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
