"""Application settings loaded from the environment."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the consolidation service.

    Every field can be overridden with a ``FOLIOLENS_`` prefixed
    environment variable, e.g. ``FOLIOLENS_API_BASE_URL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FOLIOLENS_",
        env_file=".env",
        extra="ignore",
    )

    # External portfolio backend
    API_BASE_URL: str = "http://127.0.0.1:8080/api"
    API_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    MAX_CONCURRENT_REQUESTS: int = 8

    LOG_LEVEL: str = "INFO"

    # Response cache TTLs
    HOLDINGS_CACHE_SECONDS: int = 30
    HISTORY_CACHE_SECONDS: int = 60
    XIRR_CACHE_SECONDS: int = 300


settings = Settings()
