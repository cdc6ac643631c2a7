from __future__ import annotations

import hmac
import logging
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from ad_shipper.config import settings
from ad_shipper.db.deps import get_session
from ad_shipper.db.repositories import PipelineJobsRepository
from ad_shipper.pipeline.batch import run_batch
from ad_shipper.pipeline.deps import PipelineConfigError, PipelineDeps, build_pipeline_deps
from ad_shipper.pipeline.single_ad import ship_single_ad
from ad_shipper.schemas.pipeline import BatchShipRequest, ShipSingleAdRequest
from ad_shipper.services.meta_ads import MetaAdsConfigError, MetaAdsError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ship-ads", tags=["ship-ads"])


@lru_cache(maxsize=1)
def get_pipeline_deps() -> PipelineDeps:
    return build_pipeline_deps()


def require_api_key(request: Request) -> None:
    if not settings.SHIP_AD_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="SHIP_AD_API_KEY is not configured.",
        )
    provided = request.headers.get("x-api-key", "")
    if not hmac.compare_digest(provided, settings.SHIP_AD_API_KEY):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key.")


def _raise_meta_error(exc: MetaAdsError) -> None:
    status_code = exc.status_code or status.HTTP_502_BAD_GATEWAY
    detail: Any = {"message": str(exc)}
    if exc.error_payload is not None:
        detail = {"message": str(exc), "meta": exc.error_payload}
    raise HTTPException(status_code=status_code, detail=detail) from exc


@router.post("/batch", dependencies=[Depends(require_api_key)])
async def ship_batch(
    payload: BatchShipRequest,
    deps: PipelineDeps = Depends(get_pipeline_deps),
):
    try:
        result = await run_batch(payload, deps)
    except PipelineConfigError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except MetaAdsConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except MetaAdsError as exc:
        _raise_meta_error(exc)
    return result.model_dump(by_alias=True)


@router.post("/single", dependencies=[Depends(require_api_key)])
async def ship_single(
    payload: ShipSingleAdRequest,
    deps: PipelineDeps = Depends(get_pipeline_deps),
):
    result = await ship_single_ad(payload, deps)
    body = result.model_dump(by_alias=True, exclude_none=True)
    if result.success:
        return body
    status_code = (
        status.HTTP_400_BAD_REQUEST if result.step == "validate" else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return ORJSONResponse(status_code=status_code, content=body)


@router.get("/jobs/counts", dependencies=[Depends(require_api_key)])
def job_counts(session: Session = Depends(get_session)) -> dict[str, int]:
    return PipelineJobsRepository(session).counts_by_status()
