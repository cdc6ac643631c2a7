import pytest
from fastapi.testclient import TestClient

from ad_shipper.db.deps import get_session
from ad_shipper.main import app
from ad_shipper.routers.ship_ads import get_pipeline_deps
from tests.fakes import FakeMeta, make_deps

API_HEADERS = {"x-api-key": "test-ship-key"}


@pytest.fixture()
def meta():
    return FakeMeta(campaigns={"Sleep Q3": "c9"})


@pytest.fixture()
def api_client(session_factory, meta):
    deps = make_deps(session_factory, meta=meta)

    def get_session_override():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_pipeline_deps] = lambda: deps
    app.dependency_overrides[get_session] = get_session_override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _row(index: int) -> dict:
    return {
        "id": f"row-{index}",
        "deliverableName": f"Row {index}",
        "assetLink": f"https://cdn.example.com/row-{index}.mp4",
        "angle": "sleep quality",
        "format": "UGC",
        "messenger": "customer",
        "adSetName": "Broad - Sleep",
    }


def test_requires_api_key(api_client):
    response = api_client.post("/ship-ads/batch", json={"campaignId": "c1", "rows": [_row(1)]})
    assert response.status_code == 401

    response = api_client.post(
        "/ship-ads/batch",
        json={"campaignId": "c1", "rows": [_row(1)]},
        headers={"x-api-key": "wrong"},
    )
    assert response.status_code == 401


def test_batch_endpoint_returns_camel_case_results(api_client, meta):
    response = api_client.post(
        "/ship-ads/batch",
        json={"campaignName": "Sleep Q3", "rows": [_row(1), _row(2)]},
        headers=API_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["campaignId"] == "c9"
    assert body["shipped"] == 2
    assert body["results"][0]["adSetId"] == "adset_1"
    assert meta.names().count("create_adset") == 1


def test_batch_endpoint_unknown_campaign_is_bad_request(api_client):
    response = api_client.post(
        "/ship-ads/batch",
        json={"campaignName": "Missing", "rows": [_row(1)]},
        headers=API_HEADERS,
    )
    assert response.status_code == 400
    assert "Campaign not found" in response.json()["detail"]


def test_batch_endpoint_validates_payload(api_client):
    response = api_client.post("/ship-ads/batch", json={"campaignId": "c1", "rows": []}, headers=API_HEADERS)
    assert response.status_code == 422


def test_single_endpoint_reports_step_on_failure(api_client):
    response = api_client.post(
        "/ship-ads/single",
        json={"adName": "Sleep UGC", "assetUrl": "https://cdn.example.com/a.mp4", "mediaType": "image"},
        headers=API_HEADERS,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["step"] == "validate"


def test_single_endpoint_ships_ad(api_client):
    response = api_client.post(
        "/ship-ads/single",
        json={
            "adName": "Sleep UGC",
            "assetUrl": "https://cdn.example.com/a.mp4",
            "campaignId": "c1",
            "adSetId": "as_1",
        },
        headers=API_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["adSetId"] == "as_1"
    assert body["adId"]


def test_job_counts(api_client):
    response = api_client.get("/ship-ads/jobs/counts", headers=API_HEADERS)
    assert response.status_code == 200
    assert response.json()["total"] == 0
