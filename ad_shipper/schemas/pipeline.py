from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ShipAdRow(BaseModel):
    id: str
    deliverableName: str
    assetLink: str
    angle: str
    format: str
    messenger: str
    adSetName: str
    landingPageUrl: Optional[str] = None


class BatchShipRequest(BaseModel):
    campaignId: Optional[str] = None
    campaignName: Optional[str] = None
    rows: list[ShipAdRow] = Field(min_length=1)
    dryRun: bool = False

    @model_validator(mode="after")
    def require_campaign(self) -> "BatchShipRequest":
        if not (self.campaignId or self.campaignName):
            raise ValueError("Either campaignId or campaignName is required")
        return self


class ShipSingleAdRequest(BaseModel):
    adName: str = Field(min_length=1)
    assetUrl: str
    landingPageUrl: Optional[str] = None
    mediaType: str = "video"
    primaryText: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    callToAction: Optional[str] = None
    campaignId: Optional[str] = None
    campaignName: Optional[str] = None
    adSetId: Optional[str] = None
    adSetName: Optional[str] = None


class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RowResult(_ResultModel):
    id: str
    deliverable_name: str
    status: Literal["shipped", "failed", "dry_run"]
    primary_text: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    ad_ids: list[str] = Field(default_factory=list)
    creative_ids: list[str] = Field(default_factory=list)
    video_ids: list[str] = Field(default_factory=list)
    adset_id: Optional[str] = Field(default=None, alias="adSetId")
    adset_created: Optional[bool] = Field(default=None, alias="adSetCreated")
    copy_revised: Optional[bool] = None
    analysis_cached: Optional[bool] = None
    error: Optional[str] = None
    duration_ms: int = 0


class BatchResult(_ResultModel):
    campaign_id: str
    total: int
    shipped: int
    failed: int
    dry_run: int
    duration_ms: int
    results: list[RowResult]


class SingleAdResult(_ResultModel):
    success: bool
    step: Optional[str] = None
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = Field(default=None, alias="adSetId")
    adset_created: Optional[bool] = Field(default=None, alias="adSetCreated")
    video_id: Optional[str] = None
    creative_id: Optional[str] = None
    ad_id: Optional[str] = None
    primary_text: Optional[str] = None
    headline: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
