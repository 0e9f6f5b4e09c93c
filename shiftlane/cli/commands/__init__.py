"""CLI command modules for shiftlane."""

from shiftlane.cli.commands.payroll import cmd_hours, cmd_job_fee, cmd_promo, cmd_quote
from shiftlane.cli.commands.shift import cmd_shift

__all__ = ["cmd_hours", "cmd_job_fee", "cmd_promo", "cmd_quote", "cmd_shift"]
