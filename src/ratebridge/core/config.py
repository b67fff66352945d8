from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"

    database_url: str = "sqlite:///./ratebridge.db"
    redis_url: str = "redis://localhost:6379/0"

    rate_api_base_url: str = "https://api.freecurrencyapi.com/v1"
    rate_api_key: str | None = None
    rate_api_timeout_seconds: float = 30.0

    default_base_currency: str = "USD"

    sync_delay_between_calls: float = 1.0
    sync_max_retries: int = 3
    sync_retry_delay_seconds: float = 5.0
    sync_rate_limit_cooldown_seconds: float = 300.0
    sync_job_delay_seconds: float = 5.0
    sync_schedule_time: str = "00:00"
    sync_lock_ttl_seconds: int = 60 * 60

    lock_backend: Literal["local", "redis"] = "local"

    conversion_fallback_currency: str = "USD"
    conversion_enable_fallback: bool = True
    conversion_amount_decimals: int = 2
    conversion_rate_decimals: int = 8
    conversion_rounding: Literal["half_up", "half_even", "down"] = "half_up"
    conversion_min_amount: Decimal = Decimal("0.01")
    conversion_max_amount: Decimal = Decimal("999999999.99")

    @field_validator("default_base_currency", "conversion_fallback_currency")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("sync_schedule_time")
    @classmethod
    def _check_schedule_time(cls, value: str) -> str:
        hour, _, minute = value.strip().partition(":")
        if not (hour.isdigit() and minute.isdigit()):
            raise ValueError("sync_schedule_time must be HH:MM")
        if not (0 <= int(hour) <= 23 and 0 <= int(minute) <= 59):
            raise ValueError("sync_schedule_time must be HH:MM")
        return f"{int(hour):02d}:{int(minute):02d}"

    def schedule_hour_minute(self) -> tuple[int, int]:
        hour, minute = self.sync_schedule_time.split(":")
        return int(hour), int(minute)


settings = Settings()
