"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class InstallmentBookConfig(BaseSettings):
    """Installment book back office configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "installment_book.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Display configuration
    currency_symbol: str = "₹"
    display_date_format: str = "%d/%m/%Y"
    display_amount_places: int = 0

    # Collection file configuration
    slots_per_file: int = 84  # Rows in one physical collection file

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "INSTALLMENT_BOOK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = InstallmentBookConfig()


def get_config() -> InstallmentBookConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> InstallmentBookConfig:
    """Reload configuration from environment"""
    global config
    config = InstallmentBookConfig()
    return config
