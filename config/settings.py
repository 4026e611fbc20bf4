"""Centralized settings loaded from the environment and .env."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings. Every field can be overridden by an env var of the same name."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==================== Server ====================
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_file: str | None = None

    # ==================== WhatsApp bridge ====================
    whatsapp_bridge_url: str = "http://localhost:3000"
    whatsapp_client_id: str = "pandas-session"
    whatsapp_auth_dir: str = "whatsapp_auth"
    whatsapp_chat_domain: str = "c.us"
    auto_initialize: bool = True

    # Long-poll window for the bridge event stream (seconds)
    bridge_poll_timeout: float = 25.0

    # ==================== HTTP client timeouts ====================
    http_read_timeout: float = 60.0
    http_write_timeout: float = 10.0
    http_connect_timeout: float = 5.0

    # ==================== Restart supervisor ====================
    restart_cooldown: float = 3.0
    # 1.0 keeps a fixed cool-down; >1.0 grows it per failed attempt
    restart_backoff_factor: float = 1.0
    restart_max_cooldown: float = 60.0
    # None restarts forever
    restart_max_attempts: int | None = None

    # ==================== Queues ====================
    outbound_queue_max_size: int | None = None
    status_subscriber_buffer: int = 100

    @field_validator("restart_cooldown", "restart_max_cooldown")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("cool-down must be >= 0")
        return v

    @field_validator("restart_backoff_factor")
    @classmethod
    def _factor_at_least_one(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("restart_backoff_factor must be >= 1.0")
        return v

    @field_validator("restart_max_attempts", "outbound_queue_max_size")
    @classmethod
    def _positive_or_none(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("must be a positive integer or unset")
        return v

    @field_validator("status_subscriber_buffer")
    @classmethod
    def _positive_buffer(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("status_subscriber_buffer must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
