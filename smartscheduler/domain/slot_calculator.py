"""
Core business logic for calculating offerable booking slots.

This is the heart of the application - pure domain logic without any
external dependencies (no API calls, no database, no I/O).
"""

import logging
from bisect import bisect_left
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from .exceptions import InvalidRangeError
from .models import BookingLinkConfig, CandidateSlot, DateOverride, ExistingBooking, TimeRange, localize

logger = logging.getLogger(__name__)


class BusyTimeline:
    """
    Sorted, merged set of blocked ranges answering overlap queries by binary search.
    """

    def __init__(self, ranges: Iterable[TimeRange]):
        merged: List[TimeRange] = []

        for current in sorted(ranges, key=lambda r: r.start):
            if merged and current.start <= merged[-1].end:
                last = merged[-1]
                if current.end > last.end:
                    merged[-1] = TimeRange(start=last.start, end=current.end)
            else:
                merged.append(current)

        self._ranges = merged
        self._starts = [r.start for r in merged]

    def overlaps(self, candidate: TimeRange) -> bool:
        """Check if ``candidate`` intersects any blocked range."""
        # Last merged range starting before the candidate ends has the largest end.
        idx = bisect_left(self._starts, candidate.end)
        return idx > 0 and self._ranges[idx - 1].end > candidate.start

    def __len__(self) -> int:
        return len(self._ranges)


class SlotCalculator:
    """
    Computes offerable booking slots for one booking link.

    Algorithm:
    1. Clamp the requested range to the link's availability window
    2. Walk each calendar day of the range in the link's timezone
    3. Step candidate starts through the day's working hours
    4. Drop candidates inside the minimum-notice period
    5. Drop candidates overlapping buffered confirmed bookings or time blocks
    6. Drop whole days that already reached the daily booking cap
    """

    def __init__(self, config: BookingLinkConfig):
        config.validate()
        self.config = config
        self.tz = config.tzinfo()

    def compute_available_slots(
        self,
        existing_bookings: Sequence[ExistingBooking],
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        *,
        time_blocks: Sequence[TimeRange] = (),
        date_overrides: Sequence[DateOverride] = (),
        include_unavailable: bool = False,
    ) -> List[CandidateSlot]:
        """
        Compute the bookable slots of the link between two instants.

        Args:
            existing_bookings: Bookings of the responsible host; only confirmed ones block
            range_start: Start of the search period
            range_end: End of the search period (clamped to the availability window)
            now: Reference instant for lead time and availability window
            time_blocks: Host-level unavailable periods, not buffered
            date_overrides: Per-date replacements of the weekly schedule
            include_unavailable: Also return rejected candidates tagged ``available=False``

        Returns:
            Slots sorted by start time

        Raises:
            InvalidRangeError: If the clamped range is inverted
        """
        range_start, range_end = self.clamp_range(range_start, range_end, now)
        earliest_start = localize(now, self.tz) + timedelta(minutes=self.config.lead_time_minutes)

        confirmed = [b for b in existing_bookings if b.is_confirmed]
        timeline = self.build_timeline(confirmed, time_blocks)
        daily_counts = self.count_bookings_per_day(confirmed)
        overrides = {override.day: override for override in date_overrides}
        cap = self.config.max_bookings_per_day

        slots: Dict[TimeRange, CandidateSlot] = {}

        for day in self._iter_days(range_start, range_end):
            working_range = self.working_range_for_day(day, overrides)
            if working_range is None:
                continue

            day_full = cap > 0 and daily_counts.get(day, 0) >= cap
            if day_full:
                logger.debug("Daily cap of %d reached on %s", cap, day)
                if not include_unavailable:
                    continue

            for candidate in self._generate_candidates(working_range, range_start, range_end):
                available = (
                    not day_full
                    and candidate.start >= earliest_start
                    and not timeline.overlaps(candidate)
                )
                if available or include_unavailable:
                    slots.setdefault(candidate, CandidateSlot(time_range=candidate, available=available))

        result = sorted(slots.values(), key=lambda s: s.start)
        logger.debug(
            "Computed %d slots between %s and %s against %d blocked ranges",
            len(result), range_start, range_end, len(timeline),
        )
        return result

    def clamp_range(self, range_start: datetime, range_end: datetime, now: datetime):
        """
        Localize the range and cut it at ``now + availability_window_days``.
        """
        range_start = localize(range_start, self.tz)
        range_end = localize(range_end, self.tz)
        window_end = localize(now, self.tz) + timedelta(days=self.config.availability_window_days)

        if range_end > window_end:
            range_end = window_end

        if range_start > range_end:
            raise InvalidRangeError(
                f"Range start {range_start} is after range end {range_end} "
                f"(availability window ends {window_end})"
            )

        return range_start, range_end

    def working_range_for_day(
        self,
        day: date,
        overrides: Optional[Mapping[date, DateOverride]] = None,
    ) -> TimeRange | None:
        """
        Get the bookable hours for a calendar day, or None if the day is closed.
        """
        override = (overrides or {}).get(day)
        weekday_hours = self.config.hours_for_weekday(day.weekday())

        if override is not None:
            if not override.available:
                return None
            hours = override.hours or weekday_hours
            return hours.for_day(day, self.tz)

        if day.weekday() not in self.config.working_days:
            return None

        return weekday_hours.for_day(day, self.tz)

    def build_timeline(
        self,
        confirmed_bookings: Iterable[ExistingBooking],
        time_blocks: Iterable[TimeRange] = (),
    ) -> BusyTimeline:
        """Merge buffered bookings and time blocks into one timeline."""
        blocked = [
            booking.blocking_range(
                self.config.buffer_before_minutes,
                self.config.buffer_after_minutes,
            )
            for booking in confirmed_bookings
        ]
        blocked.extend(time_blocks)
        return BusyTimeline(blocked)

    def count_bookings_per_day(self, confirmed_bookings: Iterable[ExistingBooking]) -> Dict[date, int]:
        """Count confirmed bookings by the local date they start on."""
        counts: Dict[date, int] = {}
        for booking in confirmed_bookings:
            day = booking.time_range.start.astimezone(self.tz).date()
            counts[day] = counts.get(day, 0) + 1
        return counts

    def _iter_days(self, range_start: datetime, range_end: datetime) -> Iterator[date]:
        current = range_start.date()
        last = range_end.date()

        while current <= last:
            yield current
            current += timedelta(days=1)

    def _generate_candidates(
        self,
        working_range: TimeRange,
        range_start: datetime,
        range_end: datetime,
    ) -> Iterator[TimeRange]:
        """
        Step through the working range, yielding slots that fit the day and the search range.
        """
        duration = timedelta(minutes=self.config.duration_minutes)
        increment = timedelta(minutes=self.config.start_time_increment_minutes)
        start = working_range.start

        while start + duration <= working_range.end:
            end = start + duration
            if start >= range_start and end <= range_end:
                yield TimeRange(start=self.tz.normalize(start), end=self.tz.normalize(end))
            start += increment


def compute_available_slots(
    config: BookingLinkConfig,
    existing_bookings: Sequence[ExistingBooking],
    range_start: datetime,
    range_end: datetime,
    now: datetime,
    **kwargs,
) -> List[CandidateSlot]:
    """Compute offerable slots for ``config``. See ``SlotCalculator.compute_available_slots``."""
    return SlotCalculator(config).compute_available_slots(
        existing_bookings, range_start, range_end, now, **kwargs
    )
