"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_BASE_PATH = Path(os.environ.get("FLEET_RECON_BASE_PATH", Path.cwd()))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/fleet_recon.db"
    )
    database_echo: bool = Field(default=False)

    # Matching Parameters
    match_window_minutes: int = Field(default=120)
    min_match_confidence: float = Field(default=60.0)
    max_time_penalty: float = Field(default=30.0)
    max_quantity_penalty: float = Field(default=40.0)

    # Error capture
    error_trace_lines: int = Field(default=3)

    # Storage
    log_dir: Optional[Path] = Field(default=None)
    reports_dir: Path = Field(default=Path("./data/reports"))
    export_audit: bool = Field(default=True)

    def time_penalty(self, time_diff_minutes: float) -> float:
        """
        Penalty for the distance between a card swipe and a telemetry event.
        Returns: (minutes / window) * max_time_penalty
        """
        return (time_diff_minutes / self.match_window_minutes) * self.max_time_penalty


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
