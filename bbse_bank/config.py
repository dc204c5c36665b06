"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import Optional

from .interest import is_valid_rate
from .units import WEI_PER_ETHER


class BankConfig(BaseSettings):
    """BBSE bank configuration"""

    # Storage configuration
    database_url: str = "memory"  # "memory", a file path or sqlite:///path

    # Bank configuration
    yearly_return_rate: int = 10
    token_name: str = "BBSE Token"
    token_symbol: str = "BBSE"

    # Clock configuration
    clock: str = "system"  # system or manual
    clock_start: Optional[int] = None  # manual clock start timestamp

    # Development accounts, funded at startup
    dev_account_count: int = 10
    dev_account_balance: int = 100 * WEI_PER_ETHER

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    @field_validator("yearly_return_rate")
    @classmethod
    def _check_rate(cls, value: int) -> int:
        if not is_valid_rate(value):
            raise ValueError("Yearly return rate must be between 1 and 100")
        return value

    @field_validator("clock")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        value = value.lower()
        if value not in ("system", "manual"):
            raise ValueError("clock must be 'system' or 'manual'")
        return value

    class Config:
        env_prefix = "BBSE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig()
    return config
