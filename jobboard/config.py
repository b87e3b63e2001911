"""Configuration settings for the job board client."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class BoardSettings(BaseSettings):
    """Client settings loaded from ``JOBBOARD_*`` environment variables or ``.env``."""

    # Supabase
    supabase_url: str = ""
    supabase_key: Optional[str] = None  # publishable/anon key; the session carries identity

    # Store layout (keep in sync with SQL migrations)
    jobs_table: str = "jobs"
    applications_table: str = "job_applications"
    profiles_table: str = "profiles"
    resumes_bucket: str = "resumes"

    # Delay before the authoritative re-fetch that follows every mutation
    reconcile_delay_seconds: float = 1.0

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="JOBBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_board_settings() -> BoardSettings:
    """Get cached settings instance."""
    return BoardSettings()
