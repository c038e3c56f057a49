"""
Application settings using Pydantic.

Provides environment-based configuration loading with LANDFORM_ prefix.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings."""

    # State
    state_dir: str = ".landform"

    # Scheduling
    concurrency: int = 10
    destroy_policy: Literal["combined", "separate"] = "combined"

    # Retries for transient provider failures
    retry_base_seconds: float = 1.0
    retry_cap_seconds: float = 30.0
    retry_max_attempts: int = 5

    # Timeouts (None disables)
    operation_timeout_seconds: float | None = 300.0
    run_timeout_seconds: float | None = None

    # HTTP adapter
    http_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "LANDFORM_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
