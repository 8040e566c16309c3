"""
Central configuration for the live poller services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, RedisDsn, TypeAdapter, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings shared across the API and the scheduler."""

    model_config = SettingsConfigDict(
        env_prefix="LIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound to every log line")

    # ── Redis (durable backend) ──────────────────────────────
    redis_url: Optional[RedisDsn] = Field(
        default=None,
        description="When unset, the ledger and the match store use the local file backend.",
    )
    redis_max_connections: int = 20

    @model_validator(mode="after")
    def use_redis_url_fallback(self) -> "Settings":
        """Use plain REDIS_URL from env (e.g. Render, Railway) when LIVE_REDIS_URL is not set."""
        if self.redis_url is not None:
            return self
        raw = os.environ.get("REDIS_URL")
        if not raw:
            return self
        try:
            self.redis_url = TypeAdapter(RedisDsn).validate_python(raw)
        except ValueError:
            pass
        return self

    # ── File fallback ────────────────────────────────────────
    data_dir: Path = Field(default=Path("data"), description="Directory for the JSON fallback files")

    # ── Budget / kill switch ─────────────────────────────────
    polling_disabled: bool = Field(default=False, description="Kill switch: every tick is a no-op")
    api_monthly_budget: int = Field(default=3000, description="Monthly API call budget (~100/day)")

    # ── Provider (API-Sports) ────────────────────────────────
    api_sports_key: str = ""
    provider_request_timeout_s: float = 10.0
    provider_max_retries: int = 1

    @model_validator(mode="after")
    def use_api_football_key_fallback(self) -> "Settings":
        """Accept the legacy API_FOOTBALL_KEY variable for the shared API-Sports key."""
        if not self.api_sports_key:
            self.api_sports_key = os.environ.get("API_FOOTBALL_KEY", "")
        return self

    # ── Per-sport live polling ───────────────────────────────
    primary_sport: str = "football"
    football_live_interval_s: float = 30.0
    basketball_live_interval_s: float = 10.0
    rugby_live_interval_s: float = 30.0
    football_max_live_matches: int = 25
    basketball_max_live_matches: int = 15
    rugby_max_live_matches: int = 15

    # ── Scheduler loop ───────────────────────────────────────
    scheduler_default_delay_s: float = 30.0
    scheduler_max_delay_s: float = 3600.0

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]
    api_embedded_poller: bool = Field(
        default=False, description="Run the background poll loop inside the API process"
    )
    cron_secret: str = Field(
        default="", description="Bearer token required by the poll trigger route when set"
    )

    @model_validator(mode="after")
    def use_cron_secret_fallback(self) -> "Settings":
        """Accept the plain CRON_SECRET variable set by schedulers such as Vercel Cron."""
        if not self.cron_secret:
            self.cron_secret = os.environ.get("CRON_SECRET", "")
        return self

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url) if self.redis_url is not None else ""

    @property
    def redis_url_safe_log(self) -> str:
        """URL with password redacted, for logging only."""
        if self.redis_url is None:
            return ""
        try:
            u = urlparse(str(self.redis_url))
            netloc = (u.hostname or "?") + (f":{u.port}" if u.port else "")
            return f"{u.scheme}://***@{netloc}{u.path}"
        except ValueError:
            return "redis://***"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
