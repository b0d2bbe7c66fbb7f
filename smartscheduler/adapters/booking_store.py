"""
In-memory booking store, optionally seeded from a JSON file.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import pytz
from dateutil.parser import isoparse

from ..domain.exceptions import DoubleBookingError
from ..domain.models import BookingStatus, ExistingBooking, TimeRange
from ..domain.slot_calculator import localize

logger = logging.getLogger(__name__)


class InMemoryBookingStore:
    """
    Booking store keeping all bookings in a list.

    ``insert_booking`` is the conditional write: it is serialized by a lock
    and refuses a confirmed booking that overlaps another confirmed booking
    of the same host.
    """

    def __init__(self, bookings: Iterable[ExistingBooking] = ()):
        self._bookings: List[ExistingBooking] = list(bookings)
        self._lock = asyncio.Lock()

    @classmethod
    def from_json(cls, data_file: Path, timezone: str = "UTC") -> "InMemoryBookingStore":
        """
        Load bookings from a JSON file.

        The file holds a list of objects with ``host``, ``start`` and ``end``
        (ISO 8601) and optional ``id``, ``status``, ``bufferBefore`` and
        ``bufferAfter``. Naive timestamps are read in ``timezone``. Invalid
        entries are skipped with a warning.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not a JSON list
        """
        if not data_file.exists():
            raise FileNotFoundError(f"Bookings file not found: {data_file}")

        with open(data_file, "r", encoding="utf-8") as f:
            try:
                entries = json.load(f)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in {data_file}: {exc}") from exc

        if not isinstance(entries, list):
            raise ValueError("Bookings file must contain a list at the root level.")

        tz = pytz.timezone(timezone)
        bookings: List[ExistingBooking] = []

        for position, entry in enumerate(entries):
            try:
                bookings.append(cls._parse_entry(entry, tz))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping booking #%d in %s: %s", position, data_file, e)

        logger.debug("Loaded %d bookings from %s", len(bookings), data_file)
        return cls(bookings)

    @staticmethod
    def _parse_entry(entry: Dict, tz: pytz.BaseTzInfo) -> ExistingBooking:
        start = localize(isoparse(entry["start"]), tz)
        end = localize(isoparse(entry["end"]), tz)
        return ExistingBooking(
            time_range=TimeRange(start=start, end=end),
            status=BookingStatus(entry.get("status", BookingStatus.CONFIRMED.value)),
            host_id=str(entry["host"]),
            booking_id=entry.get("id"),
            buffer_before_minutes=entry.get("bufferBefore"),
            buffer_after_minutes=entry.get("bufferAfter"),
        )

    async def list_confirmed_bookings(
        self,
        host_ids: Sequence[str],
        range_start: datetime,
        range_end: datetime,
    ) -> List[ExistingBooking]:
        """Return confirmed bookings of the hosts overlapping the window."""
        window = TimeRange(start=range_start, end=range_end)
        wanted = set(host_ids)

        return [
            booking
            for booking in self._bookings
            if booking.is_confirmed
            and booking.host_id in wanted
            and booking.time_range.overlaps(window)
        ]

    async def insert_booking(self, booking: ExistingBooking) -> ExistingBooking:
        """
        Store ``booking`` unless it collides with a confirmed booking of its host.

        Raises:
            DoubleBookingError: If the host already holds an overlapping booking
        """
        async with self._lock:
            if booking.is_confirmed:
                for existing in self._bookings:
                    if (
                        existing.is_confirmed
                        and existing.host_id == booking.host_id
                        and existing.time_range.overlaps(booking.time_range)
                    ):
                        raise DoubleBookingError(
                            f"Host '{booking.host_id}' is already booked at {existing.time_range}"
                        )

            self._bookings.append(booking)

        logger.info("Stored booking %s for %s at %s", booking.booking_id, booking.host_id, booking.time_range)
        return booking

    def all_bookings(self) -> List[ExistingBooking]:
        return list(self._bookings)
