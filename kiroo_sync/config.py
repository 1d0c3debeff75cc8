"""Configuration settings for the kiroo-sync backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    # Legacy key (deprecated)
    supabase_service_role_key: str | None = None

    # Dashboard bearer tokens are issued by the auth service and only verified here
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"

    # Device API keys
    api_key_prefix: str = "ks_"
    api_key_bytes: int = 32

    # Sync
    sync_insert_retries: int = 3  # Re-reads after a natural-key conflict
    default_device_name: str = "Unknown"

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
