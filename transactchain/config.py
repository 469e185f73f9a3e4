"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Dict, Optional


class TransactChainConfig(BaseSettings):
    """TransactChain ledger configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    sqlite_path: str = "transactchain.db"

    # Concurrency configuration
    lock_timeout_seconds: float = 5.0

    # Business rules configuration
    currency: str = "USD"
    starting_balance: str = "10000.00"  # Granted to every non-admin at registration
    default_fee_rate: str = "2.0"  # Percent, for countries missing from the fee table
    fee_rates: Dict[str, str] = {}  # Overrides/extends the built-in country table

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "TRANSACTCHAIN_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = TransactChainConfig()


def get_config() -> TransactChainConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> TransactChainConfig:
    """Reload configuration from environment"""
    global config
    config = TransactChainConfig()
    return config
