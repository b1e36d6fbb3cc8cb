"""
Task Payments - Configuration
Environment configuration using Pydantic Settings
"""
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Task Payments API"
    debug: bool = False
    log_level: str = "INFO"

    # Database (MySQL)
    database_url: str = "mysql+pymysql://root:@localhost:3306/task_payments"

    # JWT Authentication
    jwt_secret_key: str = "your-super-secret-jwt-key-change-in-production"
    jwt_algorithm: str = "HS256"

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # Stripe Connect (payee accounts)
    default_currency: str = "eur"
    default_account_country: str = "IE"
    payout_schedule_interval: str = "manual"  # platform controls payout timing

    # Fee rules
    payer_fee_cents: int = 200  # €2.00
    payee_commission_percent: int = 10
    platform_name: str = "taskmarket"

    # Frontend URLs (for redirects)
    frontend_url: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
