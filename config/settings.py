"""
Configuration management for the solidity screener.

Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Exchange API (optional, public endpoints need no credentials)
    default_exchange: str = "binance"
    exchange_api_key: Optional[str] = None
    exchange_api_secret: Optional[str] = None

    # Binance live streams
    binance_ws_url: str = "wss://stream.binance.com:9443/ws"

    # Screener Configuration
    quote_asset: str = "USDT"
    scan_group_size: int = 30
    default_min_volume: float = 1_000_000.0
    default_ratio_threshold: float = 10.0
    request_timeout: float = 10.0  # seconds per exchange request

    # Kline Configuration
    kline_default_interval: str = "1m"
    kline_default_limit: int = 500

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = True

    # Security
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Observability (Logfire)
    logfire_token: Optional[str] = None
    logfire_service_name: str = "solidity-screener"
    logfire_environment: str = "development"
    logfire_trace_sample_rate: float = 0.2
    logfire_console_level: str = "info"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
