"""
Domain layer - Pure business logic without external dependencies.
"""

from .assignment import HostAssigner, assign_host
from .booking_validator import BookingValidator, validate_booking_request
from .exceptions import (
    BookingRejectedError,
    DoubleBookingError,
    HostUnavailableError,
    InvalidConfigError,
    InvalidRangeError,
    NoAvailableHostError,
    SchedulerError,
)
from .models import (
    AssignmentMethod,
    AssignmentOutcome,
    AssignmentResult,
    BookingLinkConfig,
    BookingStatus,
    CandidateSlot,
    DateOverride,
    ExistingBooking,
    TeamMember,
    TeamPool,
    TimeRange,
    WorkingHours,
)
from .slot_calculator import BusyTimeline, SlotCalculator, compute_available_slots

__all__ = [
    "AssignmentMethod",
    "AssignmentOutcome",
    "AssignmentResult",
    "BookingLinkConfig",
    "BookingRejectedError",
    "BookingStatus",
    "BookingValidator",
    "BusyTimeline",
    "CandidateSlot",
    "DateOverride",
    "DoubleBookingError",
    "ExistingBooking",
    "HostAssigner",
    "HostUnavailableError",
    "InvalidConfigError",
    "InvalidRangeError",
    "NoAvailableHostError",
    "SchedulerError",
    "SlotCalculator",
    "TeamMember",
    "TeamPool",
    "TimeRange",
    "WorkingHours",
    "assign_host",
    "compute_available_slots",
    "validate_booking_request",
]
