from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Spend.AI Secure Links API"
    database_url: str = "sqlite:///spend_links.db"
    log_level: str = "INFO"

    link_ttl_days: int = 7
    # bcrypt cost factor for passcodes and PINs
    passcode_hash_rounds: int = 12
    # Advisor-created links fall back to this passcode when the user
    # has not supplied one. Predictable; see DESIGN.md.
    advisor_default_passcode: str = "1234"

    expiry_sweep_interval_seconds: float = 60.0

    event_queue_size: int = 100
    event_delivery_attempts: int = 3
    event_retry_delay_seconds: float = 0.05
    event_keepalive_seconds: float = 15.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SPEND_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
