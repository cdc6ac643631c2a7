from __future__ import annotations

import logging
import time
from typing import Optional

from ad_shipper.pipeline.batch import resolve_campaign_id
from ad_shipper.pipeline.deps import PipelineConfigError, PipelineDeps
from ad_shipper.pipeline.links import append_utm, build_landing_url
from ad_shipper.schemas.pipeline import ShipSingleAdRequest, SingleAdResult
from ad_shipper.services.adset_resolver import AdSetResolver

logger = logging.getLogger(__name__)

_SUPPORTED_SINGLE_MEDIA = {"video"}


class SingleAdStepError(RuntimeError):
    def __init__(self, step: str, message: str) -> None:
        super().__init__(message)
        self.step = step
        self.message = message


async def _resolve_adset(
    deps: PipelineDeps,
    request: ShipSingleAdRequest,
    campaign_id: str,
) -> tuple[str, bool]:
    if request.adSetId:
        return request.adSetId, False
    if request.adSetName:
        resolution = await AdSetResolver(deps.require_meta(), deps.settings).resolve(campaign_id, request.adSetName)
        return resolution.adset_id, resolution.created
    if deps.settings.META_DEFAULT_ADSET_ID:
        return deps.settings.META_DEFAULT_ADSET_ID, False
    raise PipelineConfigError("Either adSetId or adSetName is required")


async def ship_single_ad(request: ShipSingleAdRequest, deps: PipelineDeps) -> SingleAdResult:
    """
    Ship one ad from caller-supplied copy, without analysis or review.

    Every failure is reported with the step that produced it. Nothing is rolled back:
    a failure after the video upload leaves the uploaded video in the ad account.
    """
    started = time.monotonic()
    step = "validate"
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    adset_created: Optional[bool] = None
    video_id: Optional[str] = None
    creative_id: Optional[str] = None
    primary_text = (request.primaryText or "").strip() or request.adName
    headline = (request.headline or "").strip() or request.adName

    try:
        media_type = request.mediaType.strip().lower()
        if media_type not in _SUPPORTED_SINGLE_MEDIA:
            raise SingleAdStepError(step, f'Unsupported mediaType "{request.mediaType}", only video ads can be shipped')
        meta = deps.require_meta()
        page_id = deps.settings.META_PAGE_ID
        if not page_id:
            raise PipelineConfigError("META_PAGE_ID not configured")

        step = "resolve_campaign"
        campaign_id = await resolve_campaign_id(
            deps,
            campaign_id=request.campaignId,
            campaign_name=request.campaignName,
        )

        step = "resolve_adset"
        adset_id, adset_created = await _resolve_adset(deps, request, campaign_id)

        step = "upload_video"
        assets = await deps.assets.resolve(f"single-{int(time.time())}", request.assetUrl)
        staged = assets.primary
        url = await deps.storage.presign_get(staged.path, deps.settings.MEDIA_STORAGE_PRESIGN_TTL_SECONDS)
        uploaded = await meta.upload_video(url, request.adName)
        video_id = uploaded["video_id"]

        step = "create_creative"
        landing_url = build_landing_url(request.landingPageUrl, deps.settings.PIPELINE_DEFAULT_LANDING_URL)
        creative_id = await meta.create_video_creative(
            name=f"{request.adName} Creative",
            page_id=page_id,
            video_id=video_id,
            primary_text=primary_text,
            headline=headline,
            description=request.description,
            link_url=append_utm(landing_url, deps.settings.PIPELINE_UTM_PARAMS),
            call_to_action=request.callToAction or deps.settings.META_DEFAULT_CALL_TO_ACTION,
            thumbnail_url=uploaded.get("thumbnail_url"),
            instagram_actor_id=deps.settings.META_INSTAGRAM_ACTOR_ID,
        )

        step = "create_ad"
        ad_id = await meta.create_ad(adset_id=adset_id, creative_id=creative_id, name=request.adName, status="PAUSED")
    except Exception as exc:  # noqa: BLE001
        failed_step = exc.step if isinstance(exc, SingleAdStepError) else step
        logger.exception("ship_ad.failed", extra={"step": failed_step, "ad_name": request.adName})
        return SingleAdResult(
            success=False,
            step=failed_step,
            campaign_id=campaign_id,
            adset_id=adset_id,
            adset_created=adset_created,
            video_id=video_id,
            creative_id=creative_id,
            error=str(exc) or exc.__class__.__name__,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    logger.info(
        "ship_ad.completed",
        extra={"ad_name": request.adName, "ad_id": ad_id, "campaign_id": campaign_id, "adset_id": adset_id},
    )
    return SingleAdResult(
        success=True,
        campaign_id=campaign_id,
        adset_id=adset_id,
        adset_created=adset_created,
        video_id=video_id,
        creative_id=creative_id,
        ad_id=ad_id,
        primary_text=primary_text,
        headline=headline,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
