"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOKKO_BASE_URL = "https://www.tokkobroker.com/api/v1"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TOKKO_CACHE_",
        extra="ignore",
    )

    # Origin API (tier 3)
    tokko_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="TokkoBroker API key (32+ alphanumeric characters)",
    )
    tokko_base_url: str = Field(default=DEFAULT_TOKKO_BASE_URL)
    tokko_timeout_seconds: float = Field(default=30.0, gt=0)

    # Hot tier (tier 1)
    redis_url: str = Field(
        default="",
        description="Redis connection URL; empty uses the in-process memory store",
    )
    hot_ttl_seconds: int = Field(default=3600, ge=1)
    search_ttl_seconds: int = Field(default=180, ge=1)
    hot_max_keys: int = Field(
        default=10000,
        ge=1,
        description="Upper bound on keys held by the in-memory store",
    )
    hot_key_prefix: str = Field(default="tokko:")

    # Warm tier (tier 2)
    database_path: str = Field(default="data/tokko_cache.db")
    warm_max_age_hours: int = Field(
        default=24,
        ge=0,
        description="Warm rows older than this are treated as misses (0 disables)",
    )

    # Property sync
    sync_batch_size: int = Field(default=20, ge=1, le=200)
    sync_batch_delay_seconds: float = Field(default=3.0, ge=0)
    sync_error_delay_seconds: float = Field(default=10.0, ge=0)
    sync_max_limit: int = Field(default=1000, ge=1)

    # Cache warming
    warming_enabled: bool = Field(default=True)
    warming_interval_minutes: int = Field(default=60, ge=1)
    warming_limit: int = Field(default=50, ge=1)

    # Image processing
    image_max_per_property: int = Field(default=10, ge=1)
    image_max_dimension: int = Field(default=1600, ge=64)
    image_thumbnail_size: int = Field(default=400, ge=32)
    image_webp_quality: int = Field(default=80, ge=1, le=100)
    image_concurrency: int = Field(default=3, ge=1, le=20)

    checkpoint_retention_days: int = Field(default=7, ge=1)

    # Web server
    web_host: str = Field(default="0.0.0.0")
    web_port: int = Field(default=8000)
    log_level: str = Field(default="info")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    @property
    def data_dir(self) -> str:
        """Return the directory containing the database (processed images live here too)."""
        return str(Path(self.database_path).parent)

    @property
    def origin_configured(self) -> bool:
        """Whether an origin API key has been provided."""
        return bool(self.tokko_api_key.get_secret_value())
