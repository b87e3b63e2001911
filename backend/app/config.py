"""Configuration settings for the job board backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    # New key system (preferred)
    supabase_secret_key: str | None = None  # Backend access
    # Legacy key (deprecated, will be removed)
    supabase_service_role_key: str | None = None

    # JWT: tokens are issued by Supabase Auth and only verified here
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"
    jwt_expire_minutes: int = 60  # Lifetime of tokens minted by create_access_token

    # Rate limiting: comma-separated CIDRs allowed to set X-Forwarded-For
    trusted_proxy_cidrs: str = ""

    # App
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str | None = None
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars not in model
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
