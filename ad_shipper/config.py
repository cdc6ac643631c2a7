from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., Google clients, LLM SDKs).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./ad_shipper.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    # Shared secret for the HTTP ship endpoints (x-api-key header).
    SHIP_AD_API_KEY: str | None = None

    META_GRAPH_API_VERSION: str = "v21.0"
    META_GRAPH_API_BASE_URL: str = "https://graph.facebook.com"
    META_ACCESS_TOKEN: str | None = None
    META_AD_ACCOUNT_ID: str | None = None
    META_PAGE_ID: str | None = None
    META_INSTAGRAM_ACTOR_ID: str | None = None
    META_DEFAULT_CAMPAIGN_ID: str | None = None
    META_DEFAULT_ADSET_ID: str | None = None
    META_DEFAULT_SAVED_AUDIENCE_ID: str | None = None
    # Cents. Only applied when the parent campaign has no campaign-level budget.
    META_DEFAULT_ADSET_DAILY_BUDGET: int = 20000
    META_REQUEST_TIMEOUT_SECONDS: float = 30.0
    META_DEFAULT_CALL_TO_ACTION: str = "LEARN_MORE"

    MEDIA_STORAGE_BUCKET: str | None = None
    MEDIA_STORAGE_ENDPOINT: str | None = None
    MEDIA_STORAGE_REGION: str = "us-east-1"
    MEDIA_STORAGE_ACCESS_KEY: str | None = None
    MEDIA_STORAGE_SECRET_KEY: str | None = None
    MEDIA_STORAGE_PREFIX: str = "dev"
    # Meta fetches uploaded videos from this URL, one hour is plenty.
    MEDIA_STORAGE_PRESIGN_TTL_SECONDS: int = 60 * 60
    MEDIA_STORAGE_USE_SSL: bool = True
    MEDIA_STORAGE_FORCE_PATH_STYLE: bool = True

    ASSET_DOWNLOAD_TIMEOUT_SECONDS: float = 120.0
    ASSET_DOWNLOAD_MAX_BYTES: int = 500 * 1024 * 1024

    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_MAX_COST_PER_ANALYSIS: float = 0.50
    # Used for the cost check when the source carries no duration metadata.
    GEMINI_ASSUMED_DURATION_SECONDS: float = 60.0
    GEMINI_MAX_CONCURRENT_ANALYSES: int = 2
    GEMINI_REQUEST_TIMEOUT_SECONDS: float = 300.0
    GEMINI_RETRY_BASE_DELAY_SECONDS: float = 2.0
    GEMINI_FILE_POLL_INTERVAL_SECONDS: float = 2.0

    ANALYSIS_CACHE_TTL_SECONDS: int = 60 * 60 * 24 * 7

    COPY_MODEL: str = "claude-sonnet-4-20250514"
    COPY_MAX_TOKENS: int = 1024
    COPY_DEFAULT_DESCRIPTION: str = "Learn more on our site"

    PIPELINE_MAX_CONCURRENCY: int = 3
    PIPELINE_MAX_RETRIES: int = 3
    PIPELINE_STALE_JOB_MINUTES: int = 30
    PIPELINE_DEFAULT_LANDING_URL: str = "example.com"
    PIPELINE_UTM_PARAMS: str = (
        "utm_source=meta&utm_medium=cpc&utm_campaign={{campaign.name}}&utm_content={{ad.name}}"
    )
    PIPELINE_SUPPORTED_MEDIA_TYPES: str = "video,motion"

    NOTION_API_KEY: str | None = None
    NOTION_MEDIA_DB_ID: str | None = None
    NOTION_API_VERSION: str = "2022-06-28"
    NOTION_TIMEOUT_SECONDS: float = 30.0

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        if self.PIPELINE_MAX_CONCURRENCY < 1:
            raise ValueError("PIPELINE_MAX_CONCURRENCY must be at least 1")
        if self.GEMINI_MAX_CONCURRENT_ANALYSES < 1:
            raise ValueError("GEMINI_MAX_CONCURRENT_ANALYSES must be at least 1")
        if self.ANALYSIS_CACHE_TTL_SECONDS <= 0:
            raise ValueError("ANALYSIS_CACHE_TTL_SECONDS must be positive")
        return self

    @property
    def supported_media_types(self) -> list[str]:
        return [item.strip().lower() for item in self.PIPELINE_SUPPORTED_MEDIA_TYPES.split(",") if item.strip()]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


def settings_snapshot() -> dict[str, Any]:
    """Non-secret settings, for startup logging."""
    return {
        "environment": settings.ENVIRONMENT,
        "gemini_model": settings.GEMINI_MODEL,
        "copy_model": settings.COPY_MODEL,
        "max_concurrency": settings.PIPELINE_MAX_CONCURRENCY,
        "max_concurrent_analyses": settings.GEMINI_MAX_CONCURRENT_ANALYSES,
        "analysis_cache_ttl_seconds": settings.ANALYSIS_CACHE_TTL_SECONDS,
    }
