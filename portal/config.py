"""Application configuration and settings."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the placement portal."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = "sqlite+aiosqlite:///./data/placement.db"
    data_directory: Path = Path("data")
    log_level: str = "INFO"

    notification_queue_size: int = 1000
    bulk_update_max_items: int = 500
    default_placement_type: str = "ON_CAMPUS"


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    settings = Settings()
    settings.data_directory.mkdir(parents=True, exist_ok=True)
    return settings


settings = get_settings()
