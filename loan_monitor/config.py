"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./data/loan_monitor.db"

    # Exchange
    valr_api_base: str = "https://api.valr.com"
    valr_api_key: str = ""
    valr_api_secret: str = ""
    loan_principal_subaccount: str = ""
    repayment_subaccount: str = ""
    fiat_currency: str = "ZAR"
    payment_ignore_transfer_ids: str = ""  # Comma-separated, e.g. initial collateral deposits

    # Repayments
    dry_run: bool = True
    minimum_fiat_reserve: float = 0.0
    obligations_config_path: str = "./config/obligations.json"
    repayment_interval_seconds: float = 3600.0
    scheduler_enabled: bool = True
    order_settlement_seconds: float = 2.0  # Wait between market order and status check

    # Service
    service_name: str = "loan-monitor"
    log_level: str = "INFO"
    status_history_limit: int = 10

    # HTTP Client
    http_timeout_seconds: float = 10.0


settings = Settings()
