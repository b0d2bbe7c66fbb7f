"""
Domain-specific exception hierarchy for the smart scheduler engine.
"""


class SchedulerError(Exception):
    """Base class for all scheduling errors."""


class InvalidConfigError(SchedulerError):
    """Raised when a booking link or team configuration is malformed."""


class InvalidRangeError(SchedulerError):
    """Raised when a requested date range is empty or inverted."""


class HostUnavailableError(SchedulerError):
    """Raised when a specifically requested host has a conflict at the slot."""


class NoAvailableHostError(SchedulerError):
    """Raised when no member of a team pool is free at the slot."""


class BookingRejectedError(SchedulerError):
    """
    Raised when a concrete booking request violates the link's rules.

    ``reason`` is a short machine-readable code such as ``"lead_time"``.
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class DoubleBookingError(SchedulerError):
    """Raised by a booking store when an insert would overlap a confirmed booking."""
