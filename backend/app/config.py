"""Configuration settings for the lifesync backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    # Legacy key name (deprecated)
    supabase_service_role_key: str | None = None

    # JWT (Supabase-issued access tokens)
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = "authenticated"
    jwt_expire_minutes: int = 60  # Only used for locally minted tokens

    # Scheduled jobs
    cron_secret: str | None = None  # Bearer secret for /cron/*; unset disables cron routes
    keep_backups: int = 7

    # Sync limits
    max_payload_bytes: int = 5 * 1024 * 1024
    sync_rate_limit: str = "10/minute"
    # slowapi/limits storage URI: memory:// per process, redis://... when shared
    rate_limit_storage_uri: str = "memory://"
    trusted_proxy_cidrs: list[str] = [
        "10.0.0.0/8",  # Platform internal network
        "172.16.0.0/12",  # Docker/private
        "192.168.0.0/16",  # Local dev
        "127.0.0.0/8",  # Localhost
        "::1/128",  # IPv6 localhost
    ]

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
