"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables with CATMAP_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="CATMAP_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"
    log_format: str = "json"

    # --- Storage ---
    storage_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "catmap"
    storage_timeout_seconds: float = 2.0
    storage_retry_attempts: int = 5
    storage_retry_base_delay: float = 0.05
    storage_retry_max_delay: float = 2.0
    storage_update_max_attempts: int = 20
    storage_ttl_grace_seconds: int = 3600  # expired items linger this long before purge

    # --- Cats / map ---
    geohash_precision: int = 8
    viewport_max_prefixes: int = 32
    viewport_page_size: int = 100
    pending_page_size: int = 50
    images_cdn_base: str = ""

    # --- Leaderboard ---
    leaderboard_max_n: int = 100
    leaderboard_global_scope: str = "GLOBAL"

    # --- Visit tokens ---
    token_default_ttl_seconds: int = 300
    token_max_ttl_seconds: int = 3600
    token_bytes: int = 32

    # --- Comments ---
    comment_max_length: int = 500
    comment_order: str = "asc"  # "asc" = oldest first
    comment_page_size: int = 50
    require_comment_token: bool = True

    # --- Counters ---
    counter_claim_lease_seconds: int = 30

    # --- Auth (capability check happens at the dispatcher) ---
    admin_group: str = "admin"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
