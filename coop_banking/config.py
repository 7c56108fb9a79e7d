"""
Configuration Management Module

Settings for the cooperative core, read from COOP_* environment variables
or a .env file. Unset variables fall back to the defaults below.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class CoopConfig(BaseSettings):
    """Cooperative savings and loans core configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # memory or sqlite
    sqlite_path: str = "coop_banking.db"
    sqlite_busy_timeout: float = 5.0  # seconds a writer waits for another connection

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # stderr when unset

    # Loans and reports
    payment_max_retries: int = 3  # Conditional-write retries on concurrent payments
    report_default_format: str = "dict"  # dict, json or csv

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "COOP_"
        env_file = ".env"
        case_sensitive = False


# Read once at import
config = CoopConfig()


def get_config() -> CoopConfig:
    """Process-wide settings"""
    return config


def reload_config() -> CoopConfig:
    """Re-read the environment, replacing the process-wide settings"""
    global config
    config = CoopConfig()
    return config
