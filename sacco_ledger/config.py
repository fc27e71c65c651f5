"""
Configuration Management Module

Centralized configuration using pydantic-settings. Every value can be
overridden with a SACCO_-prefixed environment variable or a .env file.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .currency import Currency


class SaccoConfig(BaseSettings):
    """SACCO ledger engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="SACCO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///sacco_ledger.db"
    use_in_memory_storage: bool = False

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None

    # Money
    currency: str = "UGX"

    # Loan rules
    default_interest_rate: str = "2.0"       # percent per month
    default_repayment_months: int = 1
    overdue_penalty_rate: str = "2.0"        # percent of principal per overdue month
    max_loan_multiplier: str = "3"           # max loan = savings x multiplier
    enforce_loan_eligibility: bool = False

    # Eligibility rules
    eligibility_min_weekly_savings: str = "10000"
    eligibility_required_weeks: int = 4
    eligibility_window_days: int = 28

    # Welfare
    weekly_welfare_amount: str = "2000"
    welfare_description: str = "Weekly welfare fee - Auto deducted"

    # Concurrency
    max_concurrency_retries: int = 3

    # Feature flags
    enable_audit_logging: bool = True
    enable_loan_status_reminders: bool = True

    @property
    def currency_enum(self) -> Currency:
        return Currency.from_code(self.currency)

    def decimal(self, name: str) -> Decimal:
        """Read a string-valued numeric setting as Decimal"""
        return Decimal(str(getattr(self, name)))

    @property
    def sqlite_path(self) -> str:
        """Filesystem path from a sqlite:/// database URL"""
        prefix = "sqlite:///"
        if self.database_url.startswith(prefix):
            return self.database_url[len(prefix):] or ":memory:"
        raise ValueError(f"Unsupported database URL: {self.database_url}")


# Global configuration instance
config = SaccoConfig()


def get_config() -> SaccoConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SaccoConfig:
    """Reload configuration from environment"""
    global config
    config = SaccoConfig()
    return config
