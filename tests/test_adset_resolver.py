import asyncio

import pytest

from ad_shipper.config import Settings
from ad_shipper.services.adset_resolver import AdSetResolver
from ad_shipper.services.meta_ads import MetaAdsConfigError


class FakeMeta:
    def __init__(self, *, existing=None, template=None, cbo: bool = False) -> None:
        self.existing = dict(existing or {})
        self.template = template
        self.cbo = cbo
        self.created: list[dict] = []
        self.lookups = 0

    async def find_adset_by_name(self, campaign_id: str, name: str):
        self.lookups += 1
        await asyncio.sleep(0.01)
        adset_id = self.existing.get(name)
        return {"id": adset_id, "name": name} if adset_id else None

    async def clone_adset_template(self, campaign_id: str):
        return self.template

    async def is_campaign_budget_optimized(self, campaign_id: str) -> bool:
        return self.cbo

    async def create_adset(self, payload: dict) -> str:
        await asyncio.sleep(0.01)
        self.created.append(payload)
        return f"adset_{len(self.created)}"


def _settings(**overrides) -> Settings:
    values = {"META_DEFAULT_SAVED_AUDIENCE_ID": "aud_1", "META_DEFAULT_ADSET_DAILY_BUDGET": 20000}
    values.update(overrides)
    return Settings(**values)


def test_concurrent_rows_create_one_adset_per_name():
    meta = FakeMeta()
    resolver = AdSetResolver(meta, _settings())

    async def _run():
        return await asyncio.gather(*(resolver.resolve("c1", "Broad - Sleep") for _ in range(5)))

    results = asyncio.run(_run())

    assert len(meta.created) == 1
    assert meta.lookups == 1
    assert {result.adset_id for result in results} == {"adset_1"}
    assert all(result.created for result in results)


def test_existing_adset_is_reused():
    meta = FakeMeta(existing={"Broad - Sleep": "as_existing"})

    result = asyncio.run(AdSetResolver(meta, _settings()).resolve("c1", "Broad - Sleep"))

    assert result.adset_id == "as_existing"
    assert result.created is False
    assert meta.created == []


def test_budget_only_set_when_campaign_is_not_cbo():
    abo = FakeMeta(cbo=False)
    asyncio.run(AdSetResolver(abo, _settings()).resolve("c1", "A"))
    assert abo.created[0]["daily_budget"] == 20000
    assert abo.created[0]["status"] == "PAUSED"

    cbo = FakeMeta(cbo=True)
    asyncio.run(AdSetResolver(cbo, _settings()).resolve("c1", "A"))
    assert "daily_budget" not in cbo.created[0]


def test_template_settings_are_copied():
    template = {
        "billing_event": "IMPRESSIONS",
        "optimization_goal": "OFFSITE_CONVERSIONS",
        "targeting": {"geo_locations": {"countries": ["US"]}},
        "promoted_object": {"pixel_id": "px", "custom_event_type": "PURCHASE"},
    }
    meta = FakeMeta(template=template)

    asyncio.run(AdSetResolver(meta, _settings()).resolve("c1", "A"))

    payload = meta.created[0]
    assert payload["optimization_goal"] == "OFFSITE_CONVERSIONS"
    assert payload["targeting"] == template["targeting"]
    assert payload["promoted_object"] == template["promoted_object"]


def test_saved_audience_is_used_without_template():
    meta = FakeMeta()
    asyncio.run(AdSetResolver(meta, _settings()).resolve("c1", "A"))
    assert meta.created[0]["targeting"] == {"saved_audience_id": "aud_1"}
    assert meta.created[0]["optimization_goal"] == "REACH"


def test_missing_targeting_source_is_a_config_error():
    meta = FakeMeta()
    resolver = AdSetResolver(meta, _settings(META_DEFAULT_SAVED_AUDIENCE_ID=None))

    with pytest.raises(MetaAdsConfigError):
        asyncio.run(resolver.resolve("c1", "A"))
    assert meta.created == []
