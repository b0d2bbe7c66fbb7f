"""
Validation of a concrete booking request against a booking link's rules.

Slot computation answers "what may be offered"; this answers "may this
exact interval be booked now", which is re-checked right before commit.
"""

import logging
from datetime import datetime, timedelta
from typing import Sequence

from .exceptions import BookingRejectedError
from .models import BookingLinkConfig, DateOverride, ExistingBooking, TimeRange
from .slot_calculator import SlotCalculator, localize

logger = logging.getLogger(__name__)


class BookingValidator:
    """Checks a requested interval for one booking link."""

    def __init__(self, config: BookingLinkConfig):
        self._calculator = SlotCalculator(config)
        self.config = config

    def validate(
        self,
        existing_bookings: Sequence[ExistingBooking],
        requested: TimeRange,
        now: datetime,
        *,
        time_blocks: Sequence[TimeRange] = (),
        date_overrides: Sequence[DateOverride] = (),
    ) -> TimeRange:
        """
        Validate ``requested`` and return it expressed in the link's timezone.

        Raises:
            BookingRejectedError: With ``reason`` one of ``duration``,
                ``lead_time``, ``availability_window``, ``non_working_day``,
                ``outside_working_hours``, ``daily_cap`` or ``conflict``
        """
        tz = self._calculator.tz
        requested = requested.in_timezone(tz)
        now = localize(now, tz)

        if requested.duration_minutes() != self.config.duration_minutes:
            self._reject(
                "duration",
                f"Booking lasts {requested.duration_minutes()} minutes, "
                f"expected {self.config.duration_minutes}",
            )

        earliest = now + timedelta(minutes=self.config.lead_time_minutes)
        if requested.start < earliest:
            self._reject(
                "lead_time",
                f"Booking must be made at least {self.config.lead_time_minutes} minutes in advance",
            )

        window_end = now + timedelta(days=self.config.availability_window_days)
        if requested.end > window_end:
            self._reject(
                "availability_window",
                f"Bookings are accepted at most {self.config.availability_window_days} days ahead",
            )

        day = requested.start.date()
        overrides = {override.day: override for override in date_overrides}
        working_range = self._calculator.working_range_for_day(day, overrides)
        if working_range is None:
            self._reject("non_working_day", f"{day} is not bookable")
        if not working_range.contains(requested):
            self._reject("outside_working_hours", f"{requested} is outside working hours {working_range}")

        confirmed = [b for b in existing_bookings if b.is_confirmed]

        cap = self.config.max_bookings_per_day
        if cap > 0 and self._calculator.count_bookings_per_day(confirmed).get(day, 0) >= cap:
            self._reject("daily_cap", "Maximum number of bookings for this day has been reached")

        if self._calculator.build_timeline(confirmed, time_blocks).overlaps(requested):
            self._reject("conflict", f"{requested} conflicts with an existing booking (including buffer time)")

        return requested

    @staticmethod
    def _reject(reason: str, message: str) -> None:
        logger.debug("Booking rejected (%s): %s", reason, message)
        raise BookingRejectedError(reason, message)


def validate_booking_request(
    config: BookingLinkConfig,
    existing_bookings: Sequence[ExistingBooking],
    requested: TimeRange,
    now: datetime,
    **kwargs,
) -> TimeRange:
    """Validate one requested interval. See ``BookingValidator.validate``."""
    return BookingValidator(config).validate(existing_bookings, requested, now, **kwargs)
