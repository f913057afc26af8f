from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FRIENDFINDER_",
        case_sensitive=False,
    )

    # Design default: local async sqlite database.
    db_url: str = "sqlite+aiosqlite:///./data/dev.db"

    # Celery
    # Default dev behavior: run tasks inline unless explicitly disabled.
    celery_eager: bool = True
    redis_url: str | None = None

    # Geohash precisions: 7 (~150m cells) for storage, 4 (~39km x 20km) for
    # candidate search. The search cell must stay larger than the LARGE radius.
    geohash_storage_precision: int = 7
    geohash_search_precision: int = 4
    proximity_search_neighbors: bool = False

    # Location pipeline
    location_update_interval_s: float = 30.0

    # Live subscriptions
    live_queue_maxsize: int = 16

    # Media storage (profile pictures)
    media_dir: str = "./data/media"
    media_base_url: str = "/media"
    max_picture_bytes: int = 5 * 1024 * 1024

    # Auth (JWT)
    jwt_signing_keys_json: str | None = None
    jwt_kid_current: str = "dev-1"

    # CORS (dev defaults)
    cors_allow_origin: str = "http://localhost:8081"
    cors_allow_credentials: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
