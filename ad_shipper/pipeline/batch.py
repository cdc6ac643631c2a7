from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from ad_shipper.pipeline.deps import PipelineConfigError, PipelineDeps
from ad_shipper.pipeline.row_pipeline import ship_row
from ad_shipper.schemas.pipeline import BatchResult, BatchShipRequest, RowResult, ShipAdRow
from ad_shipper.services.adset_resolver import AdSetResolver

logger = logging.getLogger(__name__)


async def resolve_campaign_id(
    deps: PipelineDeps,
    *,
    campaign_id: Optional[str],
    campaign_name: Optional[str],
) -> str:
    if campaign_id:
        return campaign_id
    if campaign_name:
        campaign = await deps.require_meta().find_campaign_by_name(campaign_name)
        if not campaign:
            raise PipelineConfigError(f'Campaign not found: "{campaign_name}"')
        return str(campaign["id"])
    if deps.settings.META_DEFAULT_CAMPAIGN_ID:
        return deps.settings.META_DEFAULT_CAMPAIGN_ID
    raise PipelineConfigError("Either campaignId or campaignName is required")


async def run_batch(request: BatchShipRequest, deps: PipelineDeps) -> BatchResult:
    """
    Ship every row with bounded concurrency. Rows start in input order, finish in any
    order, and a failing row never affects the others.
    """
    started = time.monotonic()
    campaign_id = await resolve_campaign_id(
        deps,
        campaign_id=request.campaignId,
        campaign_name=request.campaignName,
    )
    concurrency = deps.settings.PIPELINE_MAX_CONCURRENCY
    semaphore = asyncio.Semaphore(concurrency)
    resolver = AdSetResolver(deps.meta, deps.settings) if deps.meta is not None else None
    total = len(request.rows)

    logger.info(
        "batch_ship.started",
        extra={
            "campaign_id": campaign_id,
            "rows": total,
            "concurrency": concurrency,
            "dry_run": request.dryRun,
        },
    )

    async def _run_one(index: int, row: ShipAdRow) -> RowResult:
        async with semaphore:
            logger.info(
                "batch_ship.row_started",
                extra={"row_id": row.id, "position": index + 1, "total": total},
            )
            return await ship_row(
                row,
                campaign_id=campaign_id,
                dry_run=request.dryRun,
                resolver=resolver,
                deps=deps,
            )

    results = await asyncio.gather(*(_run_one(index, row) for index, row in enumerate(request.rows)))

    shipped = sum(1 for result in results if result.status == "shipped")
    failed = sum(1 for result in results if result.status == "failed")
    dry_run = sum(1 for result in results if result.status == "dry_run")
    batch = BatchResult(
        campaign_id=campaign_id,
        total=total,
        shipped=shipped,
        failed=failed,
        dry_run=dry_run,
        duration_ms=int((time.monotonic() - started) * 1000),
        results=list(results),
    )
    logger.info(
        "batch_ship.completed",
        extra={
            "campaign_id": campaign_id,
            "shipped": shipped,
            "failed": failed,
            "dry_run": dry_run,
            "duration_ms": batch.duration_ms,
        },
    )
    return batch
