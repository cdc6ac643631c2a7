from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ad_shipper.config import Settings, settings as default_settings
from ad_shipper.services.meta_ads import MetaAdsClient, MetaAdsConfigError

logger = logging.getLogger(__name__)

DEFAULT_BILLING_EVENT = "IMPRESSIONS"
DEFAULT_OPTIMIZATION_GOAL = "REACH"
ATTRIBUTION_SPEC = [
    {"event_type": "CLICK_THROUGH", "window_days": 7},
    {"event_type": "VIEW_THROUGH", "window_days": 1},
    {"event_type": "ENGAGED_VIDEO_VIEW", "window_days": 1},
]


@dataclass(frozen=True)
class AdSetResolution:
    name: str
    adset_id: str
    created: bool


class AdSetResolver:
    """
    Find-or-create for ad sets, deduplicated by name for the lifetime of one batch run.

    The first caller for a name inserts a task into the memo map while holding the lock;
    every later caller awaits that same task, so concurrent rows never create the same
    ad set twice. A failed task stays in the map and its error is shared by every row
    that asked for that name.
    """

    def __init__(self, meta: MetaAdsClient, settings: Settings = default_settings) -> None:
        self.meta = meta
        self.settings = settings
        self._lock = asyncio.Lock()
        self._tasks: dict[tuple[str, str], asyncio.Task[AdSetResolution]] = {}

    async def resolve(self, campaign_id: str, name: str) -> AdSetResolution:
        key = (campaign_id, name)
        async with self._lock:
            task = self._tasks.get(key)
            if task is None:
                task = asyncio.create_task(self._find_or_create(campaign_id, name))
                self._tasks[key] = task
            else:
                logger.info("adset_resolver.memo_hit", extra={"campaign_id": campaign_id, "adset_name": name})
        # Shielded so one cancelled waiter does not cancel the shared work.
        return await asyncio.shield(task)

    async def _find_or_create(self, campaign_id: str, name: str) -> AdSetResolution:
        existing = await self.meta.find_adset_by_name(campaign_id, name)
        if existing:
            logger.info(
                "adset_resolver.found",
                extra={"campaign_id": campaign_id, "adset_name": name, "adset_id": existing.get("id")},
            )
            return AdSetResolution(name=name, adset_id=str(existing["id"]), created=False)

        payload = await self.build_create_payload(campaign_id, name)
        adset_id = await self.meta.create_adset(payload)
        logger.info(
            "adset_resolver.created",
            extra={"campaign_id": campaign_id, "adset_name": name, "adset_id": adset_id},
        )
        return AdSetResolution(name=name, adset_id=adset_id, created=True)

    async def build_create_payload(self, campaign_id: str, name: str) -> dict[str, Any]:
        template: Optional[dict[str, Any]] = await self.meta.clone_adset_template(campaign_id)
        template = template or {}
        payload: dict[str, Any] = {
            "campaign_id": campaign_id,
            "name": name,
            "status": "PAUSED",
            "billing_event": template.get("billing_event") or DEFAULT_BILLING_EVENT,
            "optimization_goal": template.get("optimization_goal") or DEFAULT_OPTIMIZATION_GOAL,
            "attribution_spec": ATTRIBUTION_SPEC,
        }
        if template.get("targeting"):
            payload["targeting"] = template["targeting"]
        else:
            if not self.settings.META_DEFAULT_SAVED_AUDIENCE_ID:
                raise MetaAdsConfigError(
                    "META_DEFAULT_SAVED_AUDIENCE_ID is required when the campaign has no ad set to copy targeting from."
                )
            payload["targeting"] = {"saved_audience_id": self.settings.META_DEFAULT_SAVED_AUDIENCE_ID}
        if template.get("promoted_object"):
            payload["promoted_object"] = template["promoted_object"]

        if await self.meta.is_campaign_budget_optimized(campaign_id):
            logger.info("adset_resolver.cbo_campaign", extra={"campaign_id": campaign_id})
        else:
            payload["daily_budget"] = self.settings.META_DEFAULT_ADSET_DAILY_BUDGET
        return payload
