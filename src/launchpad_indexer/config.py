"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
launchpad indexer, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

MAINNET_API_URL = "https://api.hiro.so"
TESTNET_API_URL = "https://api.testnet.hiro.so"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )
    pool_size: int = Field(
        default=5,
        alias="DATABASE_POOL_SIZE",
        description="Connection pool size (ignored for SQLite)",
        ge=1,
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (used by the redis lock backend)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class StacksSettings(BaseSettings):
    """Stacks network and launchpad contract settings."""

    model_config = SettingsConfigDict(env_prefix="STACKS_", extra="ignore")

    network: Literal["mainnet", "testnet"] = Field(
        default="testnet",
        alias="STACKS_NETWORK",
        description="Stacks network the launchpad is deployed on",
    )
    api_url: str | None = Field(
        default=None,
        alias="STACKS_API_URL",
        description="Hiro API base URL (defaults to the network's public endpoint)",
    )
    contract_deployer: str = Field(
        default="ST1ZGGS886YCZHMFXJR1EK61ZP34FNWNSX28M1PMM",
        alias="CONTRACT_DEPLOYER",
        description="Address that deployed the launchpad contracts",
    )
    factory_contract: str = Field(
        default="launchpad-factory",
        alias="FACTORY_CONTRACT_NAME",
        description="Token registry contract name",
    )
    bonding_curve_contract: str = Field(
        default="bonding-curve",
        alias="BONDING_CURVE_CONTRACT_NAME",
        description="Buy/sell contract name",
    )
    graduation_contract: str = Field(
        default="alex-graduation",
        alias="GRADUATION_CONTRACT_NAME",
        description="Graduation contract name",
    )
    hiro_api_key: SecretStr | None = Field(
        default=None,
        alias="HIRO_API_KEY",
        description="Optional Hiro API key (raises rate limits)",
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        alias="STACKS_REQUEST_TIMEOUT_SECONDS",
        description="Timeout for a single chain API request",
        gt=0,
    )
    requests_per_second: float = Field(
        default=5.0,
        alias="STACKS_REQUESTS_PER_SECOND",
        description="Client-side rate limit for chain API requests",
        gt=0,
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str | None) -> str | None:
        """Validate API URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("STACKS_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def resolved_api_url(self) -> str:
        if self.api_url:
            return self.api_url
        return MAINNET_API_URL if self.network == "mainnet" else TESTNET_API_URL

    @property
    def contract_ids(self) -> list[str]:
        """Fully qualified ids of the watched launchpad contracts."""
        return [
            f"{self.contract_deployer}.{name}"
            for name in (self.factory_contract, self.bonding_curve_contract, self.graduation_contract)
        ]


class ChainhookSettings(BaseSettings):
    """Chainhook webhook settings."""

    model_config = SettingsConfigDict(env_prefix="CHAINHOOK_", extra="ignore")

    secret: SecretStr | None = Field(
        default=None,
        alias="CHAINHOOK_SECRET",
        description="Shared secret expected in x-chainhook-secret",
    )
    processing_timeout_seconds: float = Field(
        default=30.0,
        alias="CHAINHOOK_PROCESSING_TIMEOUT_SECONDS",
        description="Upper bound for processing one delivery",
        gt=0,
    )


class SyncSettings(BaseSettings):
    """Poll sync loop settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="SYNC_ENABLED",
        description="Run the background poll loop",
    )
    interval_seconds: float = Field(
        default=30.0,
        alias="SYNC_INTERVAL_SECONDS",
        description="Delay between poll cycles",
        gt=0,
    )
    warmup_seconds: float = Field(
        default=5.0,
        alias="SYNC_WARMUP_SECONDS",
        description="Delay before the first poll cycle",
        ge=0,
    )
    limit: int = Field(
        default=50,
        alias="SYNC_LIMIT",
        description="Transactions fetched per contract per cycle",
        ge=1,
        le=50,
    )
    cycle_timeout_seconds: float = Field(
        default=120.0,
        alias="SYNC_CYCLE_TIMEOUT_SECONDS",
        description="Upper bound for one poll cycle",
        gt=0,
    )


class LockSettings(BaseSettings):
    """Per-token lock settings."""

    model_config = SettingsConfigDict(env_prefix="LOCK_", extra="ignore")

    backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="LOCK_BACKEND",
        description="memory for a single instance, redis for several",
    )
    ttl_seconds: float = Field(
        default=30.0,
        alias="LOCK_TTL_SECONDS",
        description="Expiry of a redis lock held by a crashed instance",
        gt=0,
    )


class ServerSettings(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    host: str = Field(
        default="0.0.0.0",
        alias="HOST",
        description="Interface the HTTP server binds to",
    )
    port: int = Field(
        default=3001,
        alias="PORT",
        description="HTTP port for the API and webhook",
        ge=1,
        le=65535,
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from launchpad_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.stacks.contract_ids)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested configuration groups
    #
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
    stacks: StacksSettings = Field(
        default_factory=lambda: StacksSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chainhook: ChainhookSettings = Field(
        default_factory=lambda: ChainhookSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sync: SyncSettings = Field(
        default_factory=lambda: SyncSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    lock: LockSettings = Field(
        default_factory=lambda: LockSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    server: ServerSettings = Field(
        default_factory=lambda: ServerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
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
            "redis_url": self._redact_url(self.redis.url),
            "stacks": {
                "network": self.stacks.network,
                "api_url": self.stacks.resolved_api_url,
                "contract_deployer": self.stacks.contract_deployer,
                "hiro_api_key": "(set)" if self.stacks.hiro_api_key else "(not set)",
            },
            "chainhook": {
                "secret": "(set)" if self.chainhook.secret else "(not set)",
                "processing_timeout_seconds": str(self.chainhook.processing_timeout_seconds),
            },
            "sync": {
                "enabled": str(self.sync.enabled),
                "interval_seconds": str(self.sync.interval_seconds),
                "limit": str(self.sync.limit),
            },
            "lock_backend": self.lock.backend,
            "log_level": self.log_level,
            "server": f"{self.server.host}:{self.server.port}",
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
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

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when environment variables change.
    """
    get_settings.cache_clear()
