# Environment and configuration
# pydantic-settings reads .env = core/config.py

from typing import Optional
from pydantic import SecretStr, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# When running uvicorn/celery directly on the host (no Docker) model_config.env_file=".env"
# picks up backend/.env

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # ========= project config =========
    PROJECT_NAME: str = "ShopWatch"
    ENVIRONMENT: str = "dev"
    API_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = Field("INFO", alias="LOG_LEVEL")
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"
    OPS_API_TOKEN: Optional[SecretStr] = Field(None, alias="OPS_API_TOKEN")   # bearer token for /ops and /changes; empty = open (dev)


    # ========= Database =========
    # - inside docker the default points at the "db" service
    # - host tools (psql/scripts) can use DATABASE_URL_LOCAL
    DATABASE_URL: str = Field(
        default="postgresql+psycopg://sw_user:sw_pass@db:5432/shopwatch_dev",
        alias="DATABASE_URL"
    )
    DATABASE_URL_LOCAL: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL_LOCAL",
        description="Optional local URL for tools (e.g. psql). Typically '...@localhost:5432/shopwatch_dev'"
    )
    REDIS_URL: Optional[str] = Field(None, alias="REDIS_URL")


    # ========= celery config =========
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TIMEZONE: str = "UTC"
    CRON_RETENTION_SWEEP: str = "30 3 * * *"    # daily retention sweep
    CRON_DAILY_DIGEST: str = "0 * * * *"        # hourly digest check; each shop is only handed off once per window
    JOBS_INLINE: bool = Field(default=False, alias="JOBS_INLINE")   # True = run processing passes in-process (dev/tests)


    # ========= webhook job queue =========
    JOB_MAX_RETRIES: int = Field(3, ge=0, alias="JOB_MAX_RETRIES")               # 3 retries -> 2s, 4s, 8s, then failed
    JOB_BACKOFF_BASE_SEC: int = Field(2, ge=1, alias="JOB_BACKOFF_BASE_SEC")
    JOB_BACKOFF_MAX_SEC: int = Field(3600, ge=1, alias="JOB_BACKOFF_MAX_SEC")
    JOB_BATCH_LIMIT: int = Field(20, ge=1, le=500, alias="JOB_BATCH_LIMIT")
    JOB_STALE_AFTER_SEC: int = Field(300, ge=30, alias="JOB_STALE_AFTER_SEC")    # processing longer than this = crashed worker
    JOB_RETENTION_DAYS: int = Field(7, ge=1, alias="JOB_RETENTION_DAYS")
    JOB_KICK_DELAY_SEC: float = Field(1.0, ge=0, alias="JOB_KICK_DELAY_SEC")    # coalescing window for processing passes
    EVENTS_API_DELAY_SEC: int = Field(5, ge=0, alias="EVENTS_API_DELAY_SEC")    # let the events API catch up before author lookup


    # ========= change detection =========
    INVENTORY_PAGE_SIZE: int = Field(50, ge=1, le=250, alias="INVENTORY_PAGE_SIZE")
    INVENTORY_MAX_PAGES: int = Field(20, ge=1, alias="INVENTORY_MAX_PAGES")
    INVENTORY_ZERO_DEDUP_HOURS: int = Field(24, ge=1, alias="INVENTORY_ZERO_DEDUP_HOURS")
    DEFAULT_LOW_STOCK_THRESHOLD: int = Field(5, ge=0, alias="DEFAULT_LOW_STOCK_THRESHOLD")
    INSTANT_ALERTS_PER_HOUR: int = Field(10, ge=1, alias="INSTANT_ALERTS_PER_HOUR")
    VELOCITY_PERIOD_DAYS: int = Field(30, ge=1, alias="VELOCITY_PERIOD_DAYS")


    # ========= digest / retention =========
    DIGEST_WINDOW_HOURS: int = Field(24, ge=1, alias="DIGEST_WINDOW_HOURS")
    DIGEST_MAX_EVENTS: int = Field(50, ge=1, alias="DIGEST_MAX_EVENTS")
    EVENT_RETENTION_DAYS: int = Field(90, ge=1, alias="EVENT_RETENTION_DAYS")


    # ========= Shopify API Config =========
    SHOPIFY_API_VERSION: str = Field("2025-07", alias="SHOPIFY_API_VERSION")
    SHOPIFY_WEBHOOK_SECRET: Optional[str] = Field(None, alias="SHOPIFY_WEBHOOK_SECRET")

    # network / HTTP knobs
    SHOPIFY_HTTP_TIMEOUT: int = Field(30, alias="SHOPIFY_HTTP_TIMEOUT")
    SHOPIFY_HTTP_RETRIES: int = Field(3, alias="SHOPIFY_HTTP_RETRIES")
    SHOPIFY_HTTP_BACKOFF_MS: int = Field(200, alias="SHOPIFY_HTTP_BACKOFF_MS")


    # Redis used for single-flight flags; falls back to the broker
    @property
    def redis_for_flags(self) -> Optional[str]:
        return self.REDIS_URL or self.CELERY_BROKER_URL


settings = Settings()  # env only (including .env)
