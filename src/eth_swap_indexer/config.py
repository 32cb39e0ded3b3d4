"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
swap indexer, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

WETH_ADDRESS = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC_ADDRESS = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
USDT_ADDRESS = "0xdac17f958d2ee523a2206206994597c13d831ec7"


def _validate_address(v: str) -> str:
    if not (v.startswith("0x") and len(v) == 42):
        raise ValueError("Token address must be a 0x-prefixed 20-byte hex string")
    return v.lower()


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional chain read cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; unset disables the shared cache",
    )
    cache_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        alias="REDIS_CACHE_TTL_SECONDS",
        ge=60,
        le=90 * 24 * 3600,
        description="TTL for cached pair/token metadata",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis://")
        return v


class EthereumSettings(BaseSettings):
    """Ethereum mainnet RPC and log subscription settings."""

    model_config = SettingsConfigDict(env_prefix="ETH_", extra="ignore")

    rpc_url: str = Field(
        default="https://eth.llamarpc.com",
        alias="ETH_RPC_URL",
        description="Primary Ethereum JSON-RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="ETH_FALLBACK_RPC_URL",
        description="Fallback Ethereum JSON-RPC endpoint",
    )
    ws_url: str = Field(
        default="wss://ethereum-rpc.publicnode.com",
        alias="ETH_WS_URL",
        description="WebSocket endpoint used for eth_subscribe logs",
    )
    requests_per_second: float = Field(
        default=25.0,
        alias="ETH_REQUESTS_PER_SECOND",
        gt=0,
        le=1000,
        description="Client-side RPC rate limit",
    )
    idle_reconnect_seconds: float = Field(
        default=15.0,
        alias="ETH_IDLE_RECONNECT_SECONDS",
        ge=1.0,
        le=600.0,
        description="Force a reconnect when the log stream is silent this long",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v


class OracleSettings(BaseSettings):
    """External USD price oracle settings."""

    model_config = SettingsConfigDict(env_prefix="ORACLE_", extra="ignore")

    base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        alias="ORACLE_BASE_URL",
        description="CoinGecko API base URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="ORACLE_API_KEY",
        description="Optional CoinGecko API key",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="ORACLE_TIMEOUT_SECONDS",
        gt=0,
        le=120,
        description="HTTP timeout for a single price lookup",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("ORACLE_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class PricingSettings(BaseSettings):
    """Anchor tokens and anchor price freshness."""

    model_config = SettingsConfigDict(env_prefix="PRICING_", extra="ignore")

    native_token_address: str = Field(
        default=WETH_ADDRESS,
        alias="PRICING_NATIVE_TOKEN_ADDRESS",
        description="Wrapped native asset, priced at the anchor USD price",
    )
    usd_stable_address: str = Field(
        default=USDC_ADDRESS,
        alias="PRICING_USD_STABLE_ADDRESS",
        description="Primary USD stable token, priced at 1.0",
    )
    secondary_usd_stable_address: str = Field(
        default=USDT_ADDRESS,
        alias="PRICING_SECONDARY_USD_STABLE_ADDRESS",
        description="Secondary USD stable token, priced at 1.0",
    )
    anchor_refresh_blocks: int = Field(
        default=1,
        alias="PRICING_ANCHOR_REFRESH_BLOCKS",
        ge=1,
        le=10_000,
        description="Re-fetch the anchor price once this many blocks have passed",
    )

    @field_validator("native_token_address", "usd_stable_address", "secondary_usd_stable_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _validate_address(v)


class BatcherSettings(BaseSettings):
    """Debounce, queue and persistence batching settings."""

    model_config = SettingsConfigDict(env_prefix="BATCHER_", extra="ignore")

    quiet_period_ms: int = Field(
        default=300,
        alias="BATCHER_QUIET_PERIOD_MS",
        ge=10,
        le=60_000,
        description="Quiet interval after the last log before a block is processed",
    )
    persist_batch_size: int = Field(
        default=100,
        alias="BATCHER_PERSIST_BATCH_SIZE",
        ge=1,
        le=5_000,
        description="Rows per multi-row insert",
    )
    queue_maxsize: int = Field(
        default=10_000,
        alias="BATCHER_QUEUE_MAXSIZE",
        ge=1,
        le=1_000_000,
        description="Bound on the transport -> batcher queue",
    )
    token_cache_max_entries: int | None = Field(
        default=None,
        alias="BATCHER_TOKEN_CACHE_MAX_ENTRIES",
        ge=1,
        description="Optional LRU bound for the in-memory token/pair cache",
    )

    @property
    def quiet_period_seconds(self) -> float:
        return self.quiet_period_ms / 1000.0


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from eth_swap_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.batcher.quiet_period_ms)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ethereum: EthereumSettings = Field(
        default_factory=lambda: EthereumSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    oracle: OracleSettings = Field(
        default_factory=lambda: OracleSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pricing: PricingSettings = Field(
        default_factory=lambda: PricingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    batcher: BatcherSettings = Field(
        default_factory=lambda: BatcherSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "ethereum": {
                "rpc_url": self._redact_url(self.ethereum.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.ethereum.fallback_rpc_url)
                    if self.ethereum.fallback_rpc_url
                    else "(not set)"
                ),
                "ws_url": self._redact_url(self.ethereum.ws_url),
                "idle_reconnect_seconds": str(self.ethereum.idle_reconnect_seconds),
            },
            "oracle": {
                "base_url": self.oracle.base_url,
                "api_key": "(set)" if self.oracle.api_key else "(not set)",
            },
            "pricing": {
                "native_token_address": self.pricing.native_token_address,
                "anchor_refresh_blocks": str(self.pricing.anchor_refresh_blocks),
            },
            "batcher": {
                "quiet_period_ms": str(self.batcher.quiet_period_ms),
                "persist_batch_size": str(self.batcher.persist_batch_size),
                "queue_maxsize": str(self.batcher.queue_maxsize),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (tests reload settings with new env vars)."""
    get_settings.cache_clear()
