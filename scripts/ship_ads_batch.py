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
from ad_shipper.pipeline.batch import run_batch
from ad_shipper.pipeline.deps import build_pipeline_deps
from ad_shipper.schemas.pipeline import BatchShipRequest


def _load_rows(path: Path) -> list[dict]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    rows = payload.get("rows") if isinstance(payload, dict) else payload
    if not isinstance(rows, list) or not rows:
        raise RuntimeError(f"{path} must contain a non-empty list of rows (or an object with a 'rows' list).")
    return rows


def main() -> int:
    parser = argparse.ArgumentParser(description="Ship a batch of video ads to Meta as PAUSED ads.")
    parser.add_argument("--input", required=True, help="JSON file with the rows to ship")
    parser.add_argument("--campaign-id", default=None)
    parser.add_argument("--campaign-name", default=None)
    parser.add_argument("--dry-run", action="store_true", help="Stage, analyze and write copy without touching Meta")
    parser.add_argument("--output", default=None, help="Output JSON file path")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    request = BatchShipRequest(
        campaignId=args.campaign_id,
        campaignName=args.campaign_name,
        rows=_load_rows(Path(args.input)),
        dryRun=args.dry_run,
    )
    result = asyncio.run(run_batch(request, build_pipeline_deps()))
    rendered = json.dumps(result.model_dump(by_alias=True), indent=2)

    if args.output:
        Path(args.output).write_text(rendered + "\n", encoding="utf-8")
    else:
        print(rendered)
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
