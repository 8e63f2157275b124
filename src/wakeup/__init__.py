"""Recurring Wake-on-LAN scheduler and magic-packet dispatch engine."""

from __future__ import annotations

from .errors import (
    DispatchError,
    ExactTimerDenied,
    InvalidMacAddress,
    NotFoundError,
    SchedulingComputationError,
    TransientNetworkError,
    ValidationError,
    WakeupError,
)

__all__ = [
    "DispatchError",
    "ExactTimerDenied",
    "InvalidMacAddress",
    "NotFoundError",
    "SchedulingComputationError",
    "TransientNetworkError",
    "ValidationError",
    "WakeupError",
]
