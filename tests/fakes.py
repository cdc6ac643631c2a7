import io
from typing import Any

from ad_shipper.config import Settings
from ad_shipper.pipeline.deps import PipelineDeps
from ad_shipper.schemas.ad_copy import AccuracyReview, ComplianceReview, CopyResult, ReviewLog
from ad_shipper.schemas.video_analysis import VideoAnalysis
from ad_shipper.services.analysis_cache import AnalysisCache
from ad_shipper.services.asset_links import AssetValidationError, LinkType
from ad_shipper.services.asset_resolver import ResolvedAssets, StagedVideo
from ad_shipper.services.copy_engine import CopyGenerationError
from ad_shipper.services.media_storage import MediaStorage


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.presigned: list[tuple[str, int]] = []
        self.reads: list[str] = []

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, ContentType=None, Metadata=None):
        self.objects[Key] = {"Body": Body, "ContentType": ContentType, "Metadata": Metadata or {}}
        return {}

    def get_object(self, *, Bucket: str, Key: str):
        self.reads.append(Key)
        stored = self.objects[Key]
        return {"Body": io.BytesIO(stored["Body"]), "ContentType": stored["ContentType"]}

    def generate_presigned_url(self, *, ClientMethod: str, Params: dict[str, str], ExpiresIn: int) -> str:
        self.presigned.append((Params["Key"], ExpiresIn))
        return f"https://storage.test/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"


def make_storage(prefix: str = "dev") -> MediaStorage:
    return MediaStorage(
        bucket="test-bucket",
        endpoint=None,
        access_key=None,
        secret_key=None,
        prefix=prefix,
        client=FakeS3Client(),
    )


class FakeAssets:
    """Stages a fake 4:5 cut (plus a 9:16 cut when the link says so) into real storage."""

    def __init__(
        self,
        storage: MediaStorage,
        *,
        fail_links: tuple[str, ...] = (),
        duration_seconds: float | None = None,
    ) -> None:
        self.storage = storage
        self.duration_seconds = duration_seconds
        self.fail_links = set(fail_links)
        self.resolved: list[str] = []

    async def resolve(self, row_id: str, asset_link: str):
        self.resolved.append(row_id)
        if asset_link in self.fail_links:
            raise AssetValidationError(f"No video files found in Drive folder: {asset_link}")

        async def _stage(ratio: str) -> StagedVideo:
            key = self.storage.build_staging_key(job_key=f"{row_id}_{ratio.replace(':', 'x')}", filename="ad.mp4")
            path = await self.storage.upload(b"video", key, "video/mp4")
            return StagedVideo(
                path=path,
                ratio=ratio,
                content_type="video/mp4",
                source_name="ad.mp4",
                duration_seconds=self.duration_seconds,
            )

        primary = await _stage("4:5")
        secondary = await _stage("9:16") if "folders" in asset_link else None
        link_type = LinkType.drive_folder if secondary else LinkType.direct
        return ResolvedAssets(link_type=link_type, primary=primary, secondary=secondary)


ANALYSIS_PAYLOAD = {
    "scenes": [{"timestamp": "0:00", "description": "Product close-up", "shotType": "close-up"}],
    "textOverlays": [],
    "emotionalTone": "calm",
    "creativeApproach": "demo",
}


class FakeAnalyzer:
    def __init__(self) -> None:
        self.paths: list[str] = []
        self.durations: list[float | None] = []

    async def analyze(self, staged_path: str, duration_seconds=None, *, content_type=None):
        self.paths.append(staged_path)
        self.durations.append(duration_seconds)
        return VideoAnalysis.model_validate(ANALYSIS_PAYLOAD)


class FakeCopyEngine:
    def __init__(self, *, fail_for: tuple[str, ...] = ()) -> None:
        self.fail_for = set(fail_for)
        self.contexts: list[Any] = []

    async def generate(self, context):
        self.contexts.append(context)
        if context.deliverable_name in self.fail_for:
            raise CopyGenerationError("drafter returned incomplete copy", stage="drafter")
        return CopyResult(
            primary_text=f"Copy for {context.deliverable_name}",
            headline="Sleep better",
            description="Learn more on our site",
            review_log=ReviewLog(
                compliance=ComplianceReview(verdict="PASS"),
                accuracy=AccuracyReview(verdict="GREEN"),
                revised=False,
                rounds=1,
            ),
        )


class FakeMeta:
    """Records every Graph call the pipeline makes."""

    def __init__(self, *, campaigns: dict[str, str] | None = None, adsets: dict[str, str] | None = None) -> None:
        self.campaigns = dict(campaigns or {})
        self.adsets = dict(adsets or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._counter = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    async def find_campaign_by_name(self, name: str):
        self.calls.append(("find_campaign_by_name", {"name": name}))
        campaign_id = self.campaigns.get(name)
        return {"id": campaign_id, "name": name} if campaign_id else None

    async def find_adset_by_name(self, campaign_id: str, name: str):
        self.calls.append(("find_adset_by_name", {"campaign_id": campaign_id, "name": name}))
        adset_id = self.adsets.get(name)
        return {"id": adset_id, "name": name} if adset_id else None

    async def clone_adset_template(self, campaign_id: str):
        return None

    async def is_campaign_budget_optimized(self, campaign_id: str) -> bool:
        return False

    async def create_adset(self, payload: dict[str, Any]) -> str:
        adset_id = self._next("adset")
        self.adsets[payload["name"]] = adset_id
        self.calls.append(("create_adset", payload))
        return adset_id

    async def upload_video(self, file_url: str, title: str) -> dict[str, Any]:
        self.calls.append(("upload_video", {"file_url": file_url, "title": title}))
        return {"video_id": self._next("video"), "thumbnail_url": None}

    async def create_video_creative(self, **kwargs) -> str:
        self.calls.append(("create_video_creative", kwargs))
        return self._next("creative")

    async def create_placement_mapped_creative(self, **kwargs) -> str:
        self.calls.append(("create_placement_mapped_creative", kwargs))
        return self._next("creative")

    async def create_ad(self, *, adset_id: str, creative_id: str, name: str, status: str = "PAUSED") -> str:
        self.calls.append(("create_ad", {"adset_id": adset_id, "creative_id": creative_id, "name": name, "status": status}))
        return self._next("ad")

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


def make_deps(
    session_factory,
    *,
    meta: Any = None,
    copy: Any = None,
    fail_links: tuple[str, ...] = (),
    **setting_overrides,
) -> PipelineDeps:
    storage = make_storage()
    values = {
        "META_PAGE_ID": "page_1",
        "META_DEFAULT_SAVED_AUDIENCE_ID": "aud_1",
        "PIPELINE_MAX_CONCURRENCY": 2,
        "PIPELINE_DEFAULT_LANDING_URL": "example.com",
        "PIPELINE_UTM_PARAMS": "utm_source=meta",
    }
    values.update(setting_overrides)
    return PipelineDeps(
        storage=storage,
        assets=FakeAssets(storage, fail_links=fail_links),
        analyzer=FakeAnalyzer(),
        cache=AnalysisCache(ttl_seconds=3600, session_factory=session_factory),
        copy=copy or FakeCopyEngine(),
        meta=meta,
        settings=Settings(**values),
    )
