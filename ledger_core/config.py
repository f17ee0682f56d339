"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LedgerConfig(BaseSettings):
    """Ledger core configuration"""
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Account numbering
    account_number_prefix: str = "AC"
    account_number_width: int = 6
    
    # Business rules configuration
    amount_precision: int = 2
    max_transaction_amount: str = ""  # Empty = unlimited
    
    # Concurrency configuration
    lock_timeout_seconds: Optional[float] = None  # None = wait indefinitely


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
