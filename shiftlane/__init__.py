"""
shiftlane - Shift lifecycle and payroll engine for a shift-work marketplace.

Venues post shifts, workers apply, offers are made and accepted, and
completed shifts are settled into invoices.
"""

from .config import PayrollConfig
from .errors import ShiftEngineError

try:
    from importlib.metadata import version

    __version__ = version("shiftlane")
except Exception:
    __version__ = "0.0.0"

__all__ = ["PayrollConfig", "ShiftEngineError"]
