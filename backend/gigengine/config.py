from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./gigengine.db"

    # Search
    default_page_size: int = 20
    max_page_size: int = 100
    default_search_radius_km: float = 50.0
    max_search_radius_km: float = 500.0
    geo_cell_size_degrees: float = 0.5
    default_suggestion_limit: int = 10
    max_suggestions: int = 20

    # Lifecycle
    default_gig_ttl_days: int = 30
    sweep_interval_seconds: int = 300
    # Each API process rebuilds its own geo index on every sweep; with several
    # workers this is what brings gigs written by the others into its index
    enable_background_sweep: bool = True

    # Per-call deadline, overridable with the X-Request-Timeout header
    request_timeout_seconds: float = 10.0

    # External user directory (falls back to the local users table)
    user_directory_url: Optional[str] = None
    user_directory_timeout_seconds: float = 5.0

    # App
    debug: bool = False
    allowed_origins: Optional[str] = None  # comma-separated


settings = Settings()
