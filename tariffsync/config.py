"""TariffSync — Central Configuration via Pydantic Settings."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Upstream APIs ──
    usitc_api_url: str = "https://hts.usitc.gov/api"
    ustr_api_url: str = "https://ustr.gov/api"
    cbp_api_url: str = "https://www.cbp.gov/api"
    fed_register_api_url: str = "https://www.federalregister.gov/api/v1"
    http_timeout: float = 30.0

    # ── Rate limits (one sliding window per upstream) ──
    usitc_rate_window_ms: int = 60_000
    usitc_rate_max_requests: int = 60
    ustr_rate_window_ms: int = 60_000
    ustr_rate_max_requests: int = 30
    cbp_rate_window_ms: int = 60_000
    cbp_rate_max_requests: int = 30
    federal_register_rate_window_ms: int = 60_000
    federal_register_rate_max_requests: int = 20

    # ── Cache tiers (seconds) ──
    cache_short_ttl: int = 300
    cache_default_ttl: int = 3600
    cache_long_ttl: int = 86400

    # ── Database ──
    database_url: str = ""

    # ── Sync ──
    sync_concurrency: int = 3
    sync_retries: int = 3
    sync_batch_size: int = 100
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    lease_ttl_seconds: int = 6 * 3600

    # ── App ──
    api_key: Optional[str] = None
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    product_sync_cron: str = "0 1 * * *"
    tariff_sync_cron: str = "0 2 * * *"
    update_sync_cron: str = "0 */4 * * *"
    cleanup_cron: str = "0 3 * * *"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        return "sqlite:///./tariffsync.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
