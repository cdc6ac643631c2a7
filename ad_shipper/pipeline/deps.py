from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ad_shipper.config import Settings, settings as default_settings
from ad_shipper.services.analysis_cache import AnalysisCache
from ad_shipper.services.asset_resolver import AssetResolver
from ad_shipper.services.copy_engine import CopyEngine
from ad_shipper.services.media_storage import MediaStorage
from ad_shipper.services.meta_ads import MetaAdsClient, MetaAdsConfigError
from ad_shipper.services.video_intelligence import VideoIntelligenceClient

logger = logging.getLogger(__name__)


class PipelineConfigError(RuntimeError):
    pass


@dataclass
class PipelineDeps:
    """Collaborators shared by every row of a run. Built once, passed explicitly."""

    storage: MediaStorage
    assets: AssetResolver
    analyzer: VideoIntelligenceClient
    cache: AnalysisCache
    copy: CopyEngine
    meta: Optional[MetaAdsClient] = None
    settings: Settings = field(default_factory=lambda: default_settings)

    def require_meta(self) -> MetaAdsClient:
        if self.meta is None:
            raise MetaAdsConfigError("Meta Ads is not configured (META_ACCESS_TOKEN / META_AD_ACCOUNT_ID).")
        return self.meta


def build_pipeline_deps() -> PipelineDeps:
    storage = MediaStorage.from_settings()
    meta: Optional[MetaAdsClient] = None
    try:
        meta = MetaAdsClient.from_settings()
    except MetaAdsConfigError as exc:
        # Dry runs work without Meta; shipping will fail per row with this message.
        logger.warning("pipeline.meta_not_configured", extra={"error": str(exc)})
    return PipelineDeps(
        storage=storage,
        assets=AssetResolver.from_settings(storage),
        analyzer=VideoIntelligenceClient.from_settings(storage),
        cache=AnalysisCache.from_settings(),
        copy=CopyEngine.from_settings(),
        meta=meta,
    )
