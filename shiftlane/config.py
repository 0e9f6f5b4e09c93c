"""Payroll configuration.

The fee schedules are external configuration the cost engine reads, not
constants it owns. Services take a ``PayrollConfig`` explicitly; use
:func:`shiftlane.settings.get_settings` to build one from the environment.
"""

from dataclasses import dataclass

# Observed production values
DEFAULT_SERVICE_FEE_RATE = 0.12
DEFAULT_JOB_LISTING_FEE = 50.0
DEFAULT_JOB_WEEKLY_FEE_RATE = 0.05
DEFAULT_TIME_INCREMENT_MINUTES = 15
DEFAULT_MAX_SHIFT_HOURS = 24


@dataclass(frozen=True)
class PayrollConfig:
    """Fee schedule and time rules used by the duration and cost engines."""

    service_fee_rate: float = DEFAULT_SERVICE_FEE_RATE
    job_listing_fee: float = DEFAULT_JOB_LISTING_FEE
    job_weekly_fee_rate: float = DEFAULT_JOB_WEEKLY_FEE_RATE
    time_increment_minutes: int = DEFAULT_TIME_INCREMENT_MINUTES
    max_shift_hours: int = DEFAULT_MAX_SHIFT_HOURS
    currency: str = "NZD"

    def __post_init__(self):
        if self.service_fee_rate < 0 or self.service_fee_rate > 1:
            raise ValueError("service_fee_rate must be between 0 and 1")
        if self.job_weekly_fee_rate < 0 or self.job_weekly_fee_rate > 1:
            raise ValueError("job_weekly_fee_rate must be between 0 and 1")
        if self.job_listing_fee < 0:
            raise ValueError("job_listing_fee cannot be negative")
        if self.time_increment_minutes <= 0 or 60 % self.time_increment_minutes != 0:
            raise ValueError("time_increment_minutes must evenly divide an hour")
        if self.max_shift_hours <= 0 or self.max_shift_hours > 24:
            raise ValueError("max_shift_hours must be between 1 and 24")
