"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ── Query backend ────────────────────────────────────
    query_api_url: str = "http://localhost:7971/query"
    query_timeout_seconds: float = 30.0
    max_records: int = 0  # 0 = unlimited

    # ── Templating ───────────────────────────────────────
    max_data_points: int = 1000
    default_time_column: str = "__timestamp"
    default_time_zone: str = "UTC"
    interval_style: str = "suffixed"  # suffixed | sql | seconds

    # ── Auto-execution ───────────────────────────────────
    require_confirmation_for_mutations: bool = True
    max_retries: int = 0
    retry_delay_seconds: float = 1.0

    # ── Execution history ────────────────────────────────
    history_enabled: bool = True
    history_database_url: str = "sqlite:///query_history.db"

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def record_limit(self) -> int | None:
        return self.max_records if self.max_records > 0 else None


@lru_cache
def get_settings() -> Settings:
    return Settings()
