"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.

The core never reads settings on its own; callers turn them into
per-invocation options (see MatchOptions.from_settings and
ReconciliationContext.from_settings).
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RECON_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    app_log_level: str = Field(default="INFO")
    app_log_json: bool = Field(default=False)

    # Matching
    similarity_threshold: float = Field(default=55, ge=0, le=100)
    day_tolerance: int = Field(default=2, ge=0)
    suggestion_floor: float = Field(default=40, ge=0, le=100)

    # Text normalization
    ignored_keywords: List[str] = Field(default_factory=list)
    contribution_keywords: List[str] = Field(
        default_factory=lambda: [
            "DIZIMO", "OFERTA", "MISSAO", "MISSOES", "VOTO", "CAMPANHA",
            "PRIMICIA", "DOACAO", "BENEFICENTE",
        ]
    )

    # Extraction
    snippet_lines: int = Field(default=20)
    sample_rows: int = Field(default=50)

    # AI fallback
    ai_max_attempts: int = Field(default=3)
    ai_wait_min_seconds: float = Field(default=2)
    ai_wait_max_seconds: float = Field(default=10)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
