import logging

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from ad_shipper.config import settings, settings_snapshot
from ad_shipper.db.base import engine
from ad_shipper.routers import ship_ads
from ad_shipper.services.media_storage import MediaStorageConfigurationError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    app = FastAPI(
        title="Ad Shipper API",
        default_response_class=ORJSONResponse,
    )

    @app.exception_handler(MediaStorageConfigurationError)
    async def media_storage_configuration_error_handler(
        _request: Request, exc: MediaStorageConfigurationError
    ) -> ORJSONResponse:
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(ship_ads.router)

    logger.info("app.started", extra={"settings": settings_snapshot()})
    return app


app = create_app()
