"""Domain errors for the take-home diversion workflow."""

from __future__ import annotations

# purpose: typed failures that routes translate into 400/404/409/500 responses
# status: active


class DiversionControlError(RuntimeError):
    """Base error for take-home diversion control flows."""

    status_code = 500


class ValidationError(DiversionControlError):
    """Raised when input is missing or malformed."""

    status_code = 400


class WindowViolationError(ValidationError):
    """Raised when a scan happens outside the bottle's dosing window."""

    def __init__(self, message: str, *, code: str, minutes_outside: int = 0):
        super().__init__(message)
        self.code = code
        self.minutes_outside = minutes_outside


class NotFoundError(DiversionControlError):
    """Raised when a bottle, hold, alert or patient cannot be located."""

    status_code = 404


class ConflictError(DiversionControlError):
    """Raised when the target record is not in the state the action expects."""

    status_code = 409


class PersistenceError(DiversionControlError):
    """Raised when the store rejects a write."""

    status_code = 500


class OrderIneligibleError(ValidationError):
    """Raised when a take-home order fails one or more eligibility rules."""

    def __init__(self, reasons: list[str]):
        super().__init__("Patient is not eligible for the requested take-home order")
        self.reasons = reasons
