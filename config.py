"""Engine settings loaded from environment variables via pydantic-settings."""

from enum import Enum
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendChoice(str, Enum):
    auto = "auto"
    agg = "agg"
    software = "software"


class LogFormat(str, Enum):
    json = "json"
    console = "console"


class Settings(BaseSettings):
    """All values sourced from VPD_* env vars or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="VPD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── Rendering ───────────────────────────────────────────────────────────
    raster_backend: BackendChoice = BackendChoice.auto
    zone_samples: int = Field(100, ge=1)
    reference_temp: float = 24.0      # °C at which stage ranges become RH lines

    # ── Fonts ───────────────────────────────────────────────────────────────
    default_font: str = "bundled:DejaVuSans"
    font_dirs: List[str] = []
    font_fetch_timeout_seconds: float = Field(10.0, gt=0)

    # ── Observability ───────────────────────────────────────────────────────
    log_level: str = "info"
    log_format: LogFormat = LogFormat.console


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance (cached after first call)."""
    return Settings()
