"""Environment-backed settings for shiftlane."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from shiftlane.config import PayrollConfig


class Settings(BaseSettings):
    """Application settings loaded from environment (``SHIFTLANE_*``)."""

    # Fee schedules
    service_fee_rate: float = 0.12
    job_listing_fee: float = 50.0
    job_weekly_fee_rate: float = 0.05

    # Time rules
    time_increment_minutes: int = 15
    max_shift_hours: int = 24

    currency: str = "NZD"

    # Local persistence for the CLI
    db_path: str = "shiftlane.db"
    log_level: str = "WARNING"

    class Config:
        env_prefix = "SHIFTLANE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def payroll_config(self) -> PayrollConfig:
        return PayrollConfig(
            service_fee_rate=self.service_fee_rate,
            job_listing_fee=self.job_listing_fee,
            job_weekly_fee_rate=self.job_weekly_fee_rate,
            time_increment_minutes=self.time_increment_minutes,
            max_shift_hours=self.max_shift_hours,
            currency=self.currency,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
