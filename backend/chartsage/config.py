"""
ChartSage - Configuration Management

Pydantic Settings: loads from .env, validates all configuration at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Core ──
    app_env: str = "development"
    app_debug: bool = True

    # ── Google Gemini (vision) ──
    google_api_key: str = ""
    vision_model: str = "gemini-2.0-flash"
    vision_temperature: float = 0.2
    vision_max_output_tokens: int = 1500
    vision_timeout_seconds: float = 30.0
    vision_failure_threshold: int = 3     # consecutive failures before the breaker opens
    vision_recovery_seconds: float = 60.0

    # ── Simulator ──
    simulated_delay_seconds: float = 0.0
    random_seed: Optional[int] = None

    # ── Redis (empty string = in-process storage only) ──
    redis_url: str = "redis://localhost:6379/0"

    # ── History ──
    history_limit: int = 500

    # ── CORS ──
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def vision_enabled(self) -> bool:
        return bool(self.google_api_key)


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance, created once and reused everywhere."""
    return Settings()
