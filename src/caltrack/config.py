"""Application configuration."""

import os

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

DEFAULT_DATA_TYPES = ("SR Legacy", "Foundation", "Branded")
MAX_PAGE_SIZE = 200


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    admin_token: str | None = None
    fdc_api_key: str = "DEMO_KEY"
    fdc_base_url: str = "https://api.nal.usda.gov/fdc/v1"
    fdc_data_types: str = ",".join(DEFAULT_DATA_TYPES)
    fdc_page_size: int = MAX_PAGE_SIZE
    fdc_timeout_seconds: float = 30
    sync_version: int = 3
    sync_max_retries: int = 5
    sync_initial_backoff_seconds: float = 2.0
    sync_rate_limit_wait_seconds: float = 65.0
    auto_sync_on_startup: bool = True
    store_path: str = "caltrack_usda.sqlite3"
    bulk_base_url: str = "https://fdc.nal.usda.gov/fdc-datasets"
    bulk_output_path: str = "public/data/usda-foods.json"
    bulk_temp_dir: str = ".usda-temp"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @field_validator("fdc_page_size")
    @classmethod
    def _clamp_page_size(cls, value: int) -> int:
        return max(1, min(value, MAX_PAGE_SIZE))


def parse_data_types(raw: str | None) -> tuple[str, ...]:
    """Parse the ordered partition list from env."""
    if raw is None:
        return DEFAULT_DATA_TYPES
    data_types: list[str] = []
    for chunk in raw.split(","):
        value = chunk.strip()
        if value and value not in data_types:
            data_types.append(value)
    return tuple(data_types) or DEFAULT_DATA_TYPES
