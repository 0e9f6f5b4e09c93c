"""Error taxonomy for the shift engine.

Every error is a business-rule violation reported verbatim to the caller.
None of them are retried inside the engine. Each carries enough context
(shift, actor, detail) for a UI to explain the failure.
"""

from typing import Optional


class ShiftEngineError(Exception):
    """Base class for shift lifecycle and payroll errors."""

    def __init__(
        self,
        message: str,
        shift_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.shift_id = shift_id
        self.actor_id = actor_id
        self.detail = detail

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "shift_id": self.shift_id,
            "actor_id": self.actor_id,
            "detail": self.detail,
        }


class InvalidTimeGranularity(ShiftEngineError, ValueError):
    """A clock time is not on a 15-minute boundary."""


class InvalidShiftWindow(ShiftEngineError, ValueError):
    """A start/end/break combination cannot describe a shift."""


class ShiftNotFound(ShiftEngineError):
    """No shift with the given id exists."""


class UnauthorizedTransition(ShiftEngineError):
    """The actor is not allowed to trigger the requested edge."""


class InvalidTransition(ShiftEngineError):
    """The requested edge is not defined from the shift's current status."""


class TerminalStateViolation(InvalidTransition):
    """A transition was attempted out of an absorbing state."""


class ConflictingOffer(ShiftEngineError):
    """A second offer or assignment would break shift exclusivity."""


class PromoCodeInvalid(ShiftEngineError):
    """A promo code is unknown, already used, or does not apply."""

    def __init__(self, message: str, code: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code


class BlockInvariantError(ShiftEngineError, ValueError):
    """Shifts in a block disagree on rate or role without independent pay."""


class VersionConflictError(Exception):
    """Raised when a stored shift's version doesn't match the expected version.

    Another writer updated the record between our read and our write.
    """

    def __init__(self, table: str, record_id: str, expected_version: int, actual_version: int):
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {table}/{record_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )
