"""Tests for configuration and environment settings."""

import pytest

from shiftlane.config import PayrollConfig
from shiftlane.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestPayrollConfig:
    """Tests for PayrollConfig validation."""

    def test_defaults(self):
        config = PayrollConfig()
        assert config.service_fee_rate == 0.12
        assert config.job_listing_fee == 50.0
        assert config.job_weekly_fee_rate == 0.05
        assert config.time_increment_minutes == 15
        assert config.max_shift_hours == 24

    @pytest.mark.parametrize(
        "field,value",
        [
            ("service_fee_rate", 1.5),
            ("service_fee_rate", -0.1),
            ("job_weekly_fee_rate", 2),
            ("job_listing_fee", -1),
            ("time_increment_minutes", 7),
            ("max_shift_hours", 25),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValueError):
            PayrollConfig(**{field: value})

    def test_frozen(self):
        with pytest.raises(AttributeError):
            PayrollConfig().service_fee_rate = 0.5


class TestSettings:
    """Tests for environment-backed settings."""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SHIFTLANE_SERVICE_FEE_RATE", "0.15")
        monkeypatch.setenv("SHIFTLANE_TIME_INCREMENT_MINUTES", "30")
        monkeypatch.setenv("SHIFTLANE_DB_PATH", "/tmp/elsewhere.db")

        settings = Settings()
        config = settings.payroll_config()

        assert config.service_fee_rate == 0.15
        assert config.time_increment_minutes == 30
        assert settings.db_path == "/tmp/elsewhere.db"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("SHIFTLANE_SERVICE_FEE_RATE", "3")
        with pytest.raises(ValueError):
            Settings().payroll_config()
