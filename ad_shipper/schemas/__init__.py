from ad_shipper.schemas.ad_copy import (
    AccuracyReview,
    ComplianceReview,
    CopyDraft,
    CopyResult,
    CopyState,
    ReviewLog,
)
from ad_shipper.schemas.pipeline import (
    BatchResult,
    BatchShipRequest,
    RowResult,
    ShipAdRow,
    ShipSingleAdRequest,
    SingleAdResult,
)
from ad_shipper.schemas.video_analysis import VideoAnalysis

__all__ = [
    "AccuracyReview",
    "BatchResult",
    "BatchShipRequest",
    "ComplianceReview",
    "CopyDraft",
    "CopyResult",
    "CopyState",
    "ReviewLog",
    "RowResult",
    "ShipAdRow",
    "ShipSingleAdRequest",
    "SingleAdResult",
    "VideoAnalysis",
]
