import asyncio

import pytest

from ad_shipper.pipeline.batch import resolve_campaign_id, run_batch
from ad_shipper.pipeline.deps import PipelineConfigError
from ad_shipper.schemas.pipeline import BatchShipRequest
from tests.fakes import FakeCopyEngine, FakeMeta, make_deps


def _rows(count: int, adset_name: str = "Broad - Sleep") -> list[dict]:
    return [
        {
            "id": f"row-{index}",
            "deliverableName": f"Row {index}",
            "assetLink": f"https://cdn.example.com/row-{index}.mp4",
            "angle": "sleep quality",
            "format": "UGC",
            "messenger": "customer",
            "adSetName": adset_name,
        }
        for index in range(1, count + 1)
    ]


def test_one_failing_row_does_not_affect_the_others(session_factory):
    meta = FakeMeta()
    deps = make_deps(session_factory, meta=meta, copy=FakeCopyEngine(fail_for=("Row 3",)))
    request = BatchShipRequest(campaignId="c1", rows=_rows(5))

    result = asyncio.run(run_batch(request, deps))

    assert result.total == 5
    assert result.shipped == 4
    assert result.failed == 1
    assert [row.id for row in result.results] == ["row-1", "row-2", "row-3", "row-4", "row-5"]
    failed = result.results[2]
    assert failed.status == "failed"
    assert "incomplete copy" in failed.error
    assert meta.names().count("create_ad") == 4


def test_shared_adset_name_is_created_once_per_batch(session_factory):
    meta = FakeMeta()
    deps = make_deps(session_factory, meta=meta)

    result = asyncio.run(run_batch(BatchShipRequest(campaignId="c1", rows=_rows(4)), deps))

    assert meta.names().count("create_adset") == 1
    assert {row.adset_id for row in result.results} == {"adset_1"}
    assert sum(1 for row in result.results if row.adset_created) == 4


def test_dry_run_batch_counts(session_factory):
    meta = FakeMeta(campaigns={"Sleep Q3": "c9"})
    deps = make_deps(session_factory, meta=meta)

    result = asyncio.run(run_batch(BatchShipRequest(campaignName="Sleep Q3", rows=_rows(3), dryRun=True), deps))

    assert result.campaign_id == "c9"
    assert result.dry_run == 3
    assert result.shipped == 0
    assert meta.names() == ["find_campaign_by_name"]
    payload = result.model_dump(by_alias=True)
    assert payload["dryRun"] == 3
    assert payload["results"][0]["deliverableName"] == "Row 1"


def test_batch_request_requires_a_campaign():
    with pytest.raises(ValueError):
        BatchShipRequest(rows=_rows(1))


def test_resolve_campaign_id_order(session_factory):
    meta = FakeMeta(campaigns={"Sleep Q3": "c9"})
    deps = make_deps(session_factory, meta=meta, META_DEFAULT_CAMPAIGN_ID="c_default")

    assert asyncio.run(resolve_campaign_id(deps, campaign_id="c1", campaign_name="Sleep Q3")) == "c1"
    assert asyncio.run(resolve_campaign_id(deps, campaign_id=None, campaign_name="Sleep Q3")) == "c9"
    assert asyncio.run(resolve_campaign_id(deps, campaign_id=None, campaign_name=None)) == "c_default"
    with pytest.raises(PipelineConfigError):
        asyncio.run(resolve_campaign_id(deps, campaign_id=None, campaign_name="Missing"))
