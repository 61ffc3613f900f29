"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_postgres_uri_from_env() -> str:
    """Build Postgres URI from component env vars if POSTGRES_URI is not set.

    POSTGRES_USER/PASSWORD/HOST/PORT/DB are read so the compose file and the
    services share a single source of truth. POSTGRES_URI overrides it.
    """
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "postgres")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "linktracker")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{db}"


class Settings(BaseSettings):
    """Runtime settings shared by the scrapper and the bot service."""

    service_name: str = Field(default="scrapper")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    scrapper_port: int = Field(default=8081)
    bot_port: int = Field(default=8080)
    bot_base_url: str = Field(default="http://bot:8080")
    scrapper_base_url: str = Field(default="http://scrapper:8081")

    postgres_uri: str = Field(default_factory=_default_postgres_uri_from_env)

    # Scheduler
    scheduler_interval: float = Field(default=60.0, gt=0)
    batch_size: int = Field(default=100, gt=0)
    workers: int = Field(default=4, gt=0)
    background_jobs_enabled: bool = Field(default=True)

    # Outbound HTTP
    external_request_timeout: float = Field(default=10.0, gt=0)
    retry_count: int = Field(default=3, ge=0)
    retry_backoff: float = Field(default=0.5, ge=0)
    # Comma separated, e.g. "429,500,502,503,504"
    retryable_status_codes: str = Field(default="429,500,502,503,504")
    cb_sliding_window: float = Field(default=10.0, gt=0)
    cb_min_calls: int = Field(default=5, ge=1)
    cb_fail_rate_percent: float = Field(default=50.0, gt=0, le=100)
    cb_half_open_calls: int = Field(default=1, ge=1)
    cb_open_state_duration: float = Field(default=30.0, gt=0)

    # Upstreams
    github_api_token: str = Field(default="")
    github_base_url: str = Field(default="https://api.github.com")
    stackoverflow_api_key: str = Field(default="")
    stackoverflow_base_url: str = Field(default="https://api.stackexchange.com/2.3")

    # Delivery
    message_transport: str = Field(default="HTTP")
    fallback_enabled: bool = Field(default=False)
    fallback_transport: str = Field(default="HTTP")
    bus_brokers: str = Field(default="kafka:9092")
    topic_link_updates: str = Field(default="link-updates")
    topic_dlq: str = Field(default="link-updates-dlq")
    consumer_group_id: str = Field(default="bot-link-updates")
    consumer_commit_interval: float = Field(default=1.0, gt=0)
    telegram_bot_token: str = Field(default="")

    # Cache and digest
    cache_url: str = Field(default="")
    cache_ttl: int = Field(default=3600, gt=0)
    digest_enabled: bool = Field(default=False)
    digest_hour: int = Field(default=10, ge=0, le=23)
    digest_minute: int = Field(default=0, ge=0, le=59)
    digest_max_entries: int = Field(default=10, gt=0)
    # Must outlive the gap between two digests
    digest_ttl: int = Field(default=90000, gt=0)

    # Ingress
    rate_limit_requests: int = Field(default=100, gt=0)
    rate_limit_window: float = Field(default=60.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # Both services read the same .env, each ignores the other's keys.
        extra="ignore",
    )

    @property
    def retryable_statuses(self) -> List[int]:
        return [
            int(part)
            for part in self.retryable_status_codes.split(",")
            if part.strip()
        ]

    @property
    def brokers(self) -> List[str]:
        return [b.strip() for b in self.bus_brokers.split(",") if b.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return application settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
