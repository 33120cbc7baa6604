"""
Application configuration module.
Uses Pydantic's BaseSettings for type-safe configuration with environment variable support.
"""

from typing import Optional

from loguru import logger
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Matchmaking settings.

    These are loaded from environment variables (or a .env file) and validated by Pydantic.
    Environment variables take precedence over the default values specified here.
    """
    DB_URL: str = Field("sqlite+aiosqlite:///./randomcall.db", alias="DATABASE_URL")
    DEBUG: bool = False

    # Matchmaking timers, in seconds
    POLL_INTERVAL_SECONDS: float = Field(2.0, gt=0)
    WAIT_TIMEOUT_SECONDS: float = Field(300.0, gt=0)
    CALL_TIME_LIMIT_SECONDS: float = Field(180.0, gt=0)

    # Sweeper
    STALE_WAITING_MAX_AGE_SECONDS: float = Field(300.0, gt=0)
    ABANDONED_CALL_MAX_AGE_SECONDS: float = Field(1800.0, gt=0)
    SWEEP_INTERVAL_SECONDS: float = Field(60.0, gt=0)

    HEALTH_PORT: int = 8080
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        populate_by_name = True
        # Allow extra fields in case we add more later without updating the model
        extra = "ignore"


# Cache the settings instance
_settings = None

def get_settings() -> Settings:
    """
    Get the settings instance.

    Returns:
        Settings: The settings instance.
    """
    global _settings
    if _settings is None:
        try:
            _settings = Settings()
        except ValidationError as e:
            logger.error(f"Invalid matchmaking configuration: {e}")
            raise
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
