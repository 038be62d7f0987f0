from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Back office settings loaded from environment variables."""

    env: str = "development"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Validity
    default_validity_days: int = 365  # window length for a plain recharge

    # Lifecycle
    min_reason_length: int = 10  # trimmed characters for reject/suspend

    # Listings
    transaction_page_size: int = 50
    history_limit: int = 50

    model_config = SettingsConfigDict(
        env_prefix="BACKOFFICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
