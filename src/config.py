"""
Configuration module for the StackRox provider.

Loads configuration from environment variables. Connection settings for
Central instances are not part of process configuration; they live in
ProviderConfig records referenced by each managed resource.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "stackrox_provider"
    user: str = "provider"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "stackrox_provider"),
            user=os.getenv("DB_USER", "provider"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class ControllerConfig:
    """Controller reconciliation loop configuration."""

    reconcile_interval: int = 60  # seconds
    max_concurrent_reconciles: int = 5
    pass_timeout: float = 120.0  # seconds, bounds one whole pass

    # Exponential backoff configuration for failed passes
    backoff_base_delay: int = 30
    backoff_max_delay: int = 3600
    backoff_jitter_factor: float = 0.1

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            reconcile_interval=int(os.getenv("RECONCILE_INTERVAL", "60")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            pass_timeout=float(os.getenv("PASS_TIMEOUT", "120")),
            backoff_base_delay=int(os.getenv("BACKOFF_BASE_DELAY", "30")),
            backoff_max_delay=int(os.getenv("BACKOFF_MAX_DELAY", "3600")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class CentralConfig:
    """Transport settings for calls to Central."""

    request_timeout: float = 30.0  # seconds per request
    max_attempts: int = 3
    initial_backoff: float = 0.1  # seconds, doubled on every retry

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            request_timeout=float(os.getenv("CENTRAL_REQUEST_TIMEOUT", "30")),
            max_attempts=int(os.getenv("CENTRAL_MAX_ATTEMPTS", "3")),
            initial_backoff=float(os.getenv("CENTRAL_INITIAL_BACKOFF", "0.1")),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class PluginConfig:
    """Managed kind selection."""

    # Enabled kind names (empty = every registered kind)
    enabled_kinds: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled_str = os.getenv("ENABLED_KINDS", "")
        enabled = (
            [k.strip() for k in enabled_str.split(",") if k.strip()]
            if enabled_str
            else []
        )
        return cls(enabled_kinds=enabled)

    def is_enabled(self, kind: str) -> bool:
        """Check whether a kind should be reconciled."""
        return not self.enabled_kinds or kind in self.enabled_kinds


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    central: CentralConfig
    logging: LoggingConfig
    plugins: PluginConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            central=CentralConfig.from_env(),
            logging=LoggingConfig.from_env(),
            plugins=PluginConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            central=CentralConfig(),
            logging=LoggingConfig(),
            plugins=PluginConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
