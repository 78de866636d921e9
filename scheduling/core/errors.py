"""Domain errors raised by the scheduling engine.

Every error is a per-request failure. Routes translate them into HTTP
responses; nothing here is meant to take the process down.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Malformed input. Nothing was persisted."""


class NotFoundError(SchedulingError):
    """The referenced record does not exist."""


class ConflictError(SchedulingError):
    """The requested interval is no longer available.

    Callers should refresh the slot list and ask the requester to pick again.
    """

    def __init__(self, message: str = 'Slot no longer available.') -> None:
        super().__init__(message)


class PolicyViolation(SchedulingError):
    """The action is well-formed but not permitted at this time or in this state."""


class InvalidTransitionError(PolicyViolation):
    """Raised when a status transition is not in the transition table."""


class PinLockedError(PolicyViolation):
    """Too many wrong session PIN attempts."""

    def __init__(self, message: str, locked_until) -> None:
        super().__init__(message)
        self.locked_until = locked_until


class TransientStorageError(SchedulingError):
    """The booking store timed out or was unavailable. Safe to retry."""
