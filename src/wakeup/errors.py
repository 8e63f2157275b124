"""Exception hierarchy shared by the scheduler, dispatcher, and registries."""

from __future__ import annotations


class WakeupError(Exception):
    """Base class for errors raised by the wakeup package."""


class ValidationError(WakeupError, ValueError):
    """Raised when input is rejected before any persistence or network action."""


class InvalidMacAddress(ValidationError):
    """Raised when a MAC address cannot be parsed into exactly six bytes."""


class NotFoundError(WakeupError, LookupError):
    """Raised when a device or schedule id does not exist."""


class TransientNetworkError(WakeupError):
    """A send or probe attempt that failed for one target only."""


class DispatchError(WakeupError):
    """Aggregate failure reported when every wake target failed."""

    def __init__(self, message: str, failures: list[TransientNetworkError]) -> None:
        super().__init__(message)
        self.failures = failures


class SchedulingComputationError(WakeupError):
    """Raised when no next fire instant can be computed for a schedule."""


class ExactTimerDenied(WakeupError, PermissionError):
    """Raised by a timer backend that is not allowed to arm exact timers."""


__all__ = [
    "WakeupError",
    "ValidationError",
    "InvalidMacAddress",
    "NotFoundError",
    "TransientNetworkError",
    "DispatchError",
    "SchedulingComputationError",
    "ExactTimerDenied",
]
