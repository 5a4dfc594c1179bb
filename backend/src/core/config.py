"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data Store
    database_url: str = "sqlite+aiosqlite:///./bookmarks.db"

    # Change Feed - falls back to the in-process broker when disabled
    redis_url: str = "redis://localhost:6379"
    redis_enabled: bool = False

    # Auth Service (GoTrue-style REST API)
    auth_url: str = ""
    auth_api_key: str = ""
    auth_timeout: float = 10.0
    oauth_provider: str = "google"
    # Where the identity provider returns the browser after sign-in
    site_url: str = "http://localhost:8000"
    # Seconds between access token refreshes of signed-in sessions; 0 disables
    auth_refresh_interval: float = Field(default=1800.0, ge=0)

    # Browser sessions, each with its own identity and live collection
    max_sessions: int = Field(default=1000, ge=1)
    session_cookie_secure: bool = False

    # Drop insert events whose id is already in the collection
    dedupe_inserts: bool = False

    log_level: str = "INFO"

    @property
    def oauth_redirect_url(self) -> str:
        """OAuth callback URL on this origin."""
        return f"{self.site_url.rstrip('/')}/auth/callback"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
