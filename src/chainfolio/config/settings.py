"""Application settings using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Chainfolio configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Application
    app_name: str = Field(default="Chainfolio", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Minimum log level"
    )

    # Chain RPC endpoints
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Solana RPC endpoint URL",
    )
    sui_rpc_url: str = Field(
        default="https://fullnode.mainnet.sui.io:443",
        description="Sui RPC endpoint URL",
    )
    aptos_rpc_url: str = Field(
        default="https://fullnode.mainnet.aptoslabs.com/v1",
        description="Aptos REST endpoint URL",
    )

    # Indexers and price APIs
    simplehash_api_key: SecretStr = Field(
        default=SecretStr(""), description="SimpleHash API key"
    )
    cmc_api_key: SecretStr = Field(default=SecretStr(""), description="CoinMarketCap API key")

    # Exchanges
    kraken_api_key: SecretStr = Field(default=SecretStr(""), description="Kraken API key")
    kraken_api_secret: SecretStr = Field(
        default=SecretStr(""), description="Kraken API secret (base64)"
    )
    gemini_api_key: SecretStr = Field(default=SecretStr(""), description="Gemini API key")
    gemini_api_secret: SecretStr = Field(
        default=SecretStr(""), description="Gemini API secret"
    )

    # Handler defaults
    handler_ttl_seconds: float = Field(
        default=900.0, gt=0, description="Seconds a cached result stays fresh"
    )
    handler_stale_window_seconds: float = Field(
        default=450.0, ge=0, description="Seconds past TTL a result may be served stale"
    )
    handler_max_retries: int = Field(default=3, ge=0, description="Retries after first attempt")
    handler_base_delay_seconds: float = Field(
        default=2.0, ge=0, description="Base delay for exponential backoff"
    )
    handler_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-attempt timeout"
    )
    rate_limit_max_requests: int = Field(
        default=30, ge=0, description="Requests admitted per window"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0, ge=0, description="Rate limit window length"
    )
    exchange_rate_limit_max_requests: int = Field(
        default=10, ge=0, description="Requests admitted per window for exchanges"
    )
    exchange_scale_factor: float = Field(
        default=2.0, gt=0, description="Multiplier applied to exchange TTL/retries/timeout"
    )

    @field_validator("solana_rpc_url", "sui_rpc_url", "aptos_rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must start with http:// or https://")
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
