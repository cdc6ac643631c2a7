from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from ad_shipper.config import settings

logger = logging.getLogger("meta.ads")

FEED_VIDEO_LABEL = "feed_4x5"
VERTICAL_VIDEO_LABEL = "vertical_9x16"


class MetaAdsConfigError(RuntimeError):
    pass


class MetaAdsError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, error_payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_payload = error_payload


def _normalize_ad_account_id(ad_account_id: str) -> str:
    if ad_account_id.startswith("act_"):
        return ad_account_id
    return f"act_{ad_account_id}"


def _encode_payload(payload: dict[str, Any]) -> dict[str, Any]:
    encoded: dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
            continue
        if isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value)
            continue
        encoded[key] = value
    return encoded


def _error_message(payload: Any, status_code: int) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"Meta Graph API error ({status_code}): {error['message']}"
    return f"Meta Graph API error ({status_code})."


class MetaAdsClient:
    def __init__(
        self,
        *,
        access_token: str,
        api_version: str,
        ad_account_id: str,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.api_version = api_version
        self.ad_account_id = _normalize_ad_account_id(ad_account_id)
        self.base_url = (base_url or "https://graph.facebook.com").rstrip("/")
        self.timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "MetaAdsClient":
        if not settings.META_ACCESS_TOKEN:
            raise MetaAdsConfigError("META_ACCESS_TOKEN is required to use Meta Ads integration.")
        if not settings.META_GRAPH_API_VERSION:
            raise MetaAdsConfigError("META_GRAPH_API_VERSION is required to use Meta Ads integration.")
        if not settings.META_AD_ACCOUNT_ID:
            raise MetaAdsConfigError("META_AD_ACCOUNT_ID is required to use Meta Ads integration.")
        return cls(
            access_token=settings.META_ACCESS_TOKEN,
            api_version=settings.META_GRAPH_API_VERSION,
            ad_account_id=settings.META_AD_ACCOUNT_ID,
            base_url=settings.META_GRAPH_API_BASE_URL,
            timeout_seconds=settings.META_REQUEST_TIMEOUT_SECONDS,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"
        merged_params = {**(params or {}), "access_token": self.access_token}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, params=merged_params, data=data)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            error_payload: Any = None
            try:
                error_payload = exc.response.json()
            except ValueError:
                error_payload = {"text": exc.response.text}
            status_code = exc.response.status_code
            raise MetaAdsError(
                _error_message(error_payload, status_code),
                status_code=status_code,
                error_payload=error_payload,
            ) from exc
        except httpx.RequestError as exc:
            message = f"Meta Graph API request failed: {exc}"
            raise MetaAdsError(message) from exc

        try:
            body = response.json()
        except ValueError as exc:
            message = "Meta Graph API returned a non-JSON response."
            raise MetaAdsError(message) from exc
        if not isinstance(body, dict):
            raise MetaAdsError("Meta Graph API response must be a JSON object.")
        return body

    async def _request_all(self, path: str, *, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Every item of a list edge, following `paging.cursors.after` while `paging.next` is set."""
        params = dict(params)
        out: list[dict[str, Any]] = []
        seen: set[str] = set()
        while True:
            response = await self._request("GET", path, params=params)
            out.extend(item for item in response.get("data") or [] if isinstance(item, dict))
            paging = response.get("paging")
            if not isinstance(paging, dict) or not paging.get("next"):
                return out
            cursors = paging.get("cursors")
            after = cursors.get("after") if isinstance(cursors, dict) else None
            if not after:
                return out
            if after in seen:
                raise MetaAdsError("Meta pagination cursor repeated; aborting to avoid an infinite loop.")
            seen.add(after)
            params["after"] = after

    def _account_path(self, edge: str) -> str:
        return f"{self.ad_account_id}/{edge}"

    @staticmethod
    def _require_id(response: dict[str, Any], what: str) -> str:
        object_id = response.get("id")
        if not isinstance(object_id, str) or not object_id:
            raise MetaAdsError(f"Meta did not return an id for the created {what}.", error_payload=response)
        return object_id

    # Campaigns

    async def list_campaigns(
        self,
        *,
        fields: str = "id,name,status,objective",
        limit: int = 100,
        filtering: Optional[list[dict[str, Any]]] = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"fields": fields, "limit": limit}
        if filtering:
            params["filtering"] = json.dumps(filtering)
        return await self._request_all(self._account_path("campaigns"), params=params)

    async def find_campaign_by_name(self, name: str) -> Optional[dict[str, Any]]:
        campaigns = await self.list_campaigns(
            filtering=[{"field": "name", "operator": "EQUAL", "value": name}],
        )
        for campaign in campaigns:
            if campaign.get("name") == name:
                return campaign
        return None

    async def get_campaign(self, campaign_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            campaign_id,
            params={"fields": "id,name,status,objective,daily_budget,lifetime_budget"},
        )

    async def is_campaign_budget_optimized(self, campaign_id: str) -> bool:
        """A campaign with its own daily or lifetime budget owns the spend (CBO)."""
        campaign = await self.get_campaign(campaign_id)
        return bool(campaign.get("daily_budget") or campaign.get("lifetime_budget"))

    # Ad sets

    async def list_adsets(
        self,
        campaign_id: str,
        *,
        fields: str = "id,name,status,created_time",
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        return await self._request_all(f"{campaign_id}/adsets", params={"fields": fields, "limit": limit})

    async def find_adset_by_name(self, campaign_id: str, name: str) -> Optional[dict[str, Any]]:
        for adset in await self.list_adsets(campaign_id):
            if adset.get("name") == name:
                return adset
        return None

    async def clone_adset_template(self, campaign_id: str) -> Optional[dict[str, Any]]:
        """Settings of the most recently created ad set in the campaign, or None when it has none."""
        adsets = await self.list_adsets(
            campaign_id,
            fields="id,name,created_time,billing_event,optimization_goal,targeting,promoted_object",
        )
        if not adsets:
            return None
        latest = max(adsets, key=lambda item: str(item.get("created_time") or ""))
        return {
            key: latest.get(key)
            for key in ("billing_event", "optimization_goal", "targeting", "promoted_object")
            if latest.get(key)
        }

    async def create_adset(self, payload: dict[str, Any]) -> str:
        response = await self._request("POST", self._account_path("adsets"), data=_encode_payload(payload))
        adset_id = self._require_id(response, "ad set")
        logger.info("meta.adset_created", extra={"adset_id": adset_id, "adset_name": payload.get("name")})
        return adset_id

    # Media

    async def upload_video(self, file_url: str, title: str) -> dict[str, Any]:
        """Have Meta fetch the video from `file_url`. Returns {video_id, thumbnail_url}."""
        response = await self._request(
            "POST",
            self._account_path("advideos"),
            data=_encode_payload({"file_url": file_url, "title": title}),
        )
        video_id = self._require_id(response, "video")
        thumbnail_url: Optional[str] = None
        try:
            details = await self._request("GET", video_id, params={"fields": "picture"})
            picture = details.get("picture")
            thumbnail_url = picture if isinstance(picture, str) and picture else None
        except MetaAdsError as exc:
            # Thumbnail is still rendering on Meta's side; the creative can be built without one.
            logger.warning("meta.video_thumbnail_unavailable", extra={"video_id": video_id, "error": str(exc)})
        logger.info("meta.video_uploaded", extra={"video_id": video_id, "title": title})
        return {"video_id": video_id, "thumbnail_url": thumbnail_url}

    # Creatives and ads

    async def create_video_creative(
        self,
        *,
        name: str,
        page_id: str,
        video_id: str,
        primary_text: str,
        headline: str,
        link_url: str,
        description: Optional[str] = None,
        call_to_action: str = "LEARN_MORE",
        thumbnail_url: Optional[str] = None,
        instagram_actor_id: Optional[str] = None,
    ) -> str:
        video_data: dict[str, Any] = {
            "video_id": video_id,
            "message": primary_text,
            "title": headline,
            "call_to_action": {"type": call_to_action, "value": {"link": link_url}},
        }
        if description:
            video_data["link_description"] = description
        if thumbnail_url:
            video_data["image_url"] = thumbnail_url
        object_story_spec: dict[str, Any] = {"page_id": page_id, "video_data": video_data}
        if instagram_actor_id:
            object_story_spec["instagram_actor_id"] = instagram_actor_id
        response = await self._request(
            "POST",
            self._account_path("adcreatives"),
            data=_encode_payload({"name": name, "object_story_spec": object_story_spec}),
        )
        return self._require_id(response, "creative")

    async def create_placement_mapped_creative(
        self,
        *,
        name: str,
        page_id: str,
        videos: list[dict[str, Any]],
        primary_text: str,
        headline: str,
        link_url: str,
        description: Optional[str] = None,
        call_to_action: str = "LEARN_MORE",
        instagram_actor_id: Optional[str] = None,
    ) -> str:
        """
        One creative carrying both formats: the 9:16 cut serves Stories/Reels natively and
        the 4:5 cut serves Feed (Meta auto-crops it where needed).

        `videos` items: {"video_id", "ratio" ("4:5" | "9:16"), "thumbnail_url"?}.
        """
        labelled: list[dict[str, Any]] = []
        for video in videos:
            label = VERTICAL_VIDEO_LABEL if video.get("ratio") == "9:16" else FEED_VIDEO_LABEL
            item: dict[str, Any] = {"video_id": video["video_id"], "adlabels": [{"name": label}]}
            if video.get("thumbnail_url"):
                item["thumbnail_url"] = video["thumbnail_url"]
            labelled.append(item)

        asset_feed_spec: dict[str, Any] = {
            "videos": labelled,
            "bodies": [{"text": primary_text}],
            "titles": [{"text": headline}],
            "link_urls": [{"website_url": link_url}],
            "call_to_action_types": [call_to_action],
            "ad_formats": ["SINGLE_VIDEO"],
            "optimization_type": "PLACEMENT",
            "asset_customization_rules": [
                {
                    "customization_spec": {
                        "publisher_platforms": ["facebook", "instagram"],
                        "facebook_positions": ["story", "facebook_reels"],
                        "instagram_positions": ["story", "reels"],
                    },
                    "video_label": {"name": VERTICAL_VIDEO_LABEL},
                    "priority": 1,
                },
                {
                    "customization_spec": {
                        "publisher_platforms": ["facebook", "instagram"],
                        "facebook_positions": ["feed"],
                        "instagram_positions": ["stream"],
                    },
                    "video_label": {"name": FEED_VIDEO_LABEL},
                    "priority": 2,
                },
            ],
        }
        if description:
            asset_feed_spec["descriptions"] = [{"text": description}]
        object_story_spec: dict[str, Any] = {"page_id": page_id}
        if instagram_actor_id:
            object_story_spec["instagram_actor_id"] = instagram_actor_id
        response = await self._request(
            "POST",
            self._account_path("adcreatives"),
            data=_encode_payload(
                {
                    "name": name,
                    "object_story_spec": object_story_spec,
                    "asset_feed_spec": asset_feed_spec,
                }
            ),
        )
        return self._require_id(response, "creative")

    async def create_ad(self, *, adset_id: str, creative_id: str, name: str, status: str = "PAUSED") -> str:
        response = await self._request(
            "POST",
            self._account_path("ads"),
            data=_encode_payload(
                {
                    "adset_id": adset_id,
                    "creative": {"creative_id": creative_id},
                    "name": name,
                    "status": status,
                }
            ),
        )
        ad_id = self._require_id(response, "ad")
        logger.info("meta.ad_created", extra={"ad_id": ad_id, "adset_id": adset_id, "status": status})
        return ad_id
