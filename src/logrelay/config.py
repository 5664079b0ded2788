"""Configuration via pydantic-settings, 12-factor app style."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Logrelay configuration, loaded from env vars or a .env file."""

    http_timeout: float = Field(default=10.0, description="Per-request timeout in seconds")
    http_retries: int = Field(default=2, description="Retries for timeouts, network and 5xx errors")
    http_retry_delay: float = Field(default=1.0, description="Base delay between retries in seconds")
    heartbeat_interval: float = Field(default=30.0, description="Push channel keep-alive interval in seconds")
    reconnect_delay: float = Field(default=5.0, description="Delay before a push reconnect attempt in seconds")
    history_page_size: int = Field(default=50, description="History page size for polled providers")
    queue_page_size: int = Field(default=100, description="Queue page size for polled providers")
    activity_limit: int = Field(default=100, description="Activity log entries fetched from session servers")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for sync watermarks")
    watermark_ttl: int = Field(default=7 * 24 * 3600, description="Watermark TTL in seconds")
    log_level: str = Field(default="WARNING", description="Root log level for the CLI")

    class Config:
        env_prefix = "LOGRELAY_"
        env_file = ".env"


settings = Settings()
