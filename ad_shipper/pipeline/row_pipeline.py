from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from ad_shipper.pipeline.deps import PipelineConfigError, PipelineDeps
from ad_shipper.pipeline.links import append_utm, build_landing_url, primary_text_with_link
from ad_shipper.schemas.pipeline import RowResult, ShipAdRow
from ad_shipper.services.adset_resolver import AdSetResolver
from ad_shipper.services.analysis_cache import cache_key_for
from ad_shipper.services.asset_resolver import StagedVideo
from ad_shipper.services.copy_engine import CopyContext
from ad_shipper.services.meta_ads import MetaAdsClient

logger = logging.getLogger(__name__)

_REQUIRED_ROW_FIELDS = ("id", "deliverableName", "assetLink", "adSetName")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def validate_row(row: ShipAdRow) -> None:
    missing = [name for name in _REQUIRED_ROW_FIELDS if not str(getattr(row, name) or "").strip()]
    if missing:
        raise PipelineConfigError(f"Row {row.id or '?'} is missing required field(s): {', '.join(missing)}")


async def analyze_staged_video(deps: PipelineDeps, row_id: str, staged: StagedVideo) -> tuple[dict[str, Any], bool]:
    """Cached analysis for a staged video. Returns (analysis payload, cache_hit)."""
    key = cache_key_for(staged.path)
    cached = await deps.cache.get(key)
    if cached is not None:
        logger.info("row_pipeline.analysis_cache_hit", extra={"row_id": row_id, "cache_key": key})
        return cached.analysis, True
    duration = staged.duration_seconds or deps.settings.GEMINI_ASSUMED_DURATION_SECONDS
    analysis = await deps.analyzer.analyze(staged.path, duration, content_type=staged.content_type)
    payload = analysis.to_payload()
    await deps.cache.put(key, payload, staged_path=staged.path, row_id=row_id)
    return payload, False


async def _upload_to_meta(meta: MetaAdsClient, deps: PipelineDeps, staged: StagedVideo, name: str) -> dict[str, Any]:
    ratio = staged.ratio or "4:5"
    url = await deps.storage.presign_get(staged.path, deps.settings.MEDIA_STORAGE_PRESIGN_TTL_SECONDS)
    uploaded = await meta.upload_video(url, f"{name} - {ratio}")
    return {**uploaded, "ratio": ratio}


async def ship_row(
    row: ShipAdRow,
    *,
    campaign_id: str,
    dry_run: bool,
    resolver: Optional[AdSetResolver],
    deps: PipelineDeps,
) -> RowResult:
    """
    Process one row end to end. Never raises: any failure becomes a `failed` RowResult.
    """
    started = time.monotonic()
    name = row.deliverableName
    try:
        validate_row(row)
        assets = await deps.assets.resolve(row.id, row.assetLink)
        analysis, cache_hit = await analyze_staged_video(deps, row.id, assets.primary)

        copy = await deps.copy.generate(
            CopyContext(
                analysis=analysis,
                angle=row.angle,
                format=row.format,
                messenger=row.messenger,
                deliverable_name=name,
            )
        )
        landing_url = build_landing_url(row.landingPageUrl, deps.settings.PIPELINE_DEFAULT_LANDING_URL)
        link_url = append_utm(landing_url, deps.settings.PIPELINE_UTM_PARAMS)
        primary_text = primary_text_with_link(copy.primary_text, landing_url)

        if dry_run:
            logger.info("batch_ship.row_dry_run", extra={"row_id": row.id, "deliverable": name})
            return RowResult(
                id=row.id,
                deliverable_name=name,
                status="dry_run",
                primary_text=primary_text,
                headline=copy.headline,
                description=copy.description,
                copy_revised=copy.review_log.revised,
                analysis_cached=cache_hit,
                duration_ms=_elapsed_ms(started),
            )

        meta = deps.require_meta()
        if resolver is None:
            raise PipelineConfigError("An ad set resolver is required to ship rows.")
        page_id = deps.settings.META_PAGE_ID
        if not page_id:
            raise PipelineConfigError("META_PAGE_ID not configured")

        adset = await resolver.resolve(campaign_id, row.adSetName)

        staged = [assets.primary] + ([assets.secondary] if assets.secondary else [])
        uploads = await asyncio.gather(*(_upload_to_meta(meta, deps, item, name) for item in staged))

        if len(uploads) > 1:
            creative_id = await meta.create_placement_mapped_creative(
                name=f"{name} Creative",
                page_id=page_id,
                videos=list(uploads),
                primary_text=primary_text,
                headline=copy.headline,
                description=copy.description,
                link_url=link_url,
                call_to_action=deps.settings.META_DEFAULT_CALL_TO_ACTION,
                instagram_actor_id=deps.settings.META_INSTAGRAM_ACTOR_ID,
            )
        else:
            upload = uploads[0]
            creative_id = await meta.create_video_creative(
                name=f"{name} Creative",
                page_id=page_id,
                video_id=upload["video_id"],
                primary_text=primary_text,
                headline=copy.headline,
                description=copy.description,
                link_url=link_url,
                call_to_action=deps.settings.META_DEFAULT_CALL_TO_ACTION,
                thumbnail_url=upload.get("thumbnail_url"),
                instagram_actor_id=deps.settings.META_INSTAGRAM_ACTOR_ID,
            )
        ad_id = await meta.create_ad(adset_id=adset.adset_id, creative_id=creative_id, name=name, status="PAUSED")

        logger.info(
            "batch_ship.row_shipped",
            extra={"row_id": row.id, "deliverable": name, "ad_id": ad_id, "formats": len(uploads)},
        )
        return RowResult(
            id=row.id,
            deliverable_name=name,
            status="shipped",
            primary_text=primary_text,
            headline=copy.headline,
            description=copy.description,
            ad_ids=[ad_id],
            creative_ids=[creative_id],
            video_ids=[upload["video_id"] for upload in uploads],
            adset_id=adset.adset_id,
            adset_created=adset.created,
            copy_revised=copy.review_log.revised,
            analysis_cached=cache_hit,
            duration_ms=_elapsed_ms(started),
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("batch_ship.row_failed", extra={"row_id": row.id, "deliverable": name})
        return RowResult(
            id=row.id,
            deliverable_name=name,
            status="failed",
            error=str(exc) or exc.__class__.__name__,
            duration_ms=_elapsed_ms(started),
        )
