"""
Application services for offering and committing bookings.

The service coordinates fetching bookings via a store adapter and delegates
slot computation, validation and host assignment to the domain layer. It is
also the place where the read-compute-commit sequence is serialized: per
host for single-host links and per team for team links.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from ..domain.assignment import HostAssigner
from ..domain.booking_validator import BookingValidator
from ..domain.exceptions import BookingRejectedError, InvalidConfigError
from ..domain.models import (
    AssignmentMethod,
    AssignmentResult,
    BookingLinkConfig,
    BookingStatus,
    CandidateSlot,
    DateOverride,
    ExistingBooking,
    TeamPool,
    TimeRange,
)
from ..domain.slot_calculator import SlotCalculator

logger = logging.getLogger(__name__)

# Bookings are read with this margin so buffers and daily counts see whole days.
FETCH_MARGIN = timedelta(days=1)

# Rejections that concern one host only; other team members may still take the booking.
HOST_SPECIFIC_REASONS = {"daily_cap", "conflict"}


class BookingStoreProtocol(Protocol):
    """Protocol describing the persistence behaviour needed by the service."""

    async def list_confirmed_bookings(
        self,
        host_ids: Sequence[str],
        range_start: datetime,
        range_end: datetime,
    ) -> List[ExistingBooking]:
        """Return confirmed bookings of the hosts overlapping the window."""

    async def insert_booking(self, booking: ExistingBooking) -> ExistingBooking:
        """Atomically store a booking, refusing double bookings."""


@dataclass(frozen=True)
class BookingConfirmation:
    """A committed booking and, for team links, how its host was chosen."""
    booking: ExistingBooking
    assignment: Optional[AssignmentResult] = None


class BookingService:
    """
    Orchestrates booking retrieval, slot computation and booking commits.

    Dependency inversion toward a protocol makes it easy to plug in any
    persistence backend, or the in-memory store in tests.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        assigner: Optional[HostAssigner] = None,
    ) -> None:
        self._store = store
        self._assigner = assigner or HostAssigner()
        # Entries vanish once no coroutine holds or awaits the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def fetch_bookings(
        self,
        *,
        host_ids: Sequence[str],
        range_start: datetime,
        range_end: datetime,
    ) -> Dict[str, List[ExistingBooking]]:
        """Fetch confirmed bookings for the requested hosts, grouped by host."""
        host_list = list(host_ids)

        bookings = await self._store.list_confirmed_bookings(
            host_ids=host_list,
            range_start=range_start - FETCH_MARGIN,
            range_end=range_end + FETCH_MARGIN,
        )

        return self._group_by_host(host_list, bookings)

    async def find_slots(
        self,
        *,
        config: BookingLinkConfig,
        host_ids: Sequence[str],
        range_start: datetime,
        range_end: datetime,
        now: datetime,
        time_blocks: Optional[Dict[str, List[TimeRange]]] = None,
        date_overrides: Sequence[DateOverride] = (),
        include_unavailable: bool = False,
    ) -> List[CandidateSlot]:
        """
        Compute slots for a link served by one or more hosts.

        With several hosts a slot is available when at least one host can
        take it; each host's daily cap is evaluated on its own bookings.
        """
        if not host_ids:
            raise InvalidConfigError("A booking link needs at least one host")

        calculator = SlotCalculator(config)
        range_start, range_end = calculator.clamp_range(range_start, range_end, now)

        bookings_by_host = await self.fetch_bookings(
            host_ids=host_ids,
            range_start=range_start,
            range_end=range_end,
        )

        blocks = time_blocks or {}
        merged: Dict[TimeRange, CandidateSlot] = {}

        for host_id, bookings in bookings_by_host.items():
            host_slots = calculator.compute_available_slots(
                bookings,
                range_start,
                range_end,
                now,
                time_blocks=blocks.get(host_id, []),
                date_overrides=date_overrides,
                include_unavailable=include_unavailable,
            )
            for slot in host_slots:
                known = merged.get(slot.time_range)
                if known is None or (slot.available and not known.available):
                    merged[slot.time_range] = slot

        return sorted(merged.values(), key=lambda s: s.start)

    async def book(
        self,
        *,
        config: BookingLinkConfig,
        requested: TimeRange,
        now: datetime,
        host_id: Optional[str] = None,
        pool: Optional[TeamPool] = None,
        method: AssignmentMethod | str = AssignmentMethod.ROUND_ROBIN,
        specific_member_id: Optional[str] = None,
        time_blocks: Optional[Dict[str, List[TimeRange]]] = None,
        date_overrides: Sequence[DateOverride] = (),
    ) -> BookingConfirmation:
        """
        Validate and commit a booking for a single host or a team pool.

        For team links the pool snapshot is refreshed with current bookings,
        a member is assigned, and the assignment is rolled back if the
        commit fails. ``time_blocks`` and ``date_overrides`` apply as in
        ``find_slots``.

        Raises:
            BookingRejectedError: The request violates the link's rules
            HostUnavailableError: The specific member is busy
            NoAvailableHostError: No team member is free
            DoubleBookingError: A concurrent writer took the interval first
        """
        if (host_id is None) == (pool is None):
            raise InvalidConfigError("Provide exactly one of host_id or pool")

        validator = BookingValidator(config)
        requested = requested.in_timezone(config.tzinfo())
        blocks = time_blocks or {}

        if host_id is not None:
            async with self._lock_for(f"host:{host_id}"):
                bookings = await self.fetch_bookings(
                    host_ids=[host_id],
                    range_start=requested.start,
                    range_end=requested.end,
                )
                validator.validate(
                    bookings[host_id],
                    requested,
                    now,
                    time_blocks=blocks.get(host_id, []),
                    date_overrides=date_overrides,
                )
                booking = await self._commit(host_id, requested)
            return BookingConfirmation(booking=booking)

        async with self._lock_for(f"team:{pool.name}"):
            return await self._book_for_team(
                validator, pool, requested, now, method, specific_member_id, blocks, date_overrides
            )

    async def _book_for_team(
        self,
        validator: BookingValidator,
        pool: TeamPool,
        requested: TimeRange,
        now: datetime,
        method: AssignmentMethod | str,
        specific_member_id: Optional[str],
        time_blocks: Dict[str, List[TimeRange]],
        date_overrides: Sequence[DateOverride],
    ) -> BookingConfirmation:
        # Host-independent rules first, so they are reported as such.
        validator.validate([], requested, now, date_overrides=date_overrides)

        bookings_by_host = await self.fetch_bookings(
            host_ids=pool.member_ids(),
            range_start=requested.start,
            range_end=requested.end,
        )

        for member in pool.members:
            member.bookings = bookings_by_host.get(member.member_id, [])
            member.available = self._member_may_take(
                validator,
                member.bookings,
                requested,
                now,
                time_blocks=time_blocks.get(member.member_id, []),
                date_overrides=date_overrides,
            )

        snapshot = self._snapshot(pool)
        result = self._assigner.assign(
            pool, CandidateSlot(time_range=requested), method, specific_member_id
        ).raise_for_status()

        try:
            booking = await self._commit(result.member_id, requested)
        except Exception:
            self._restore(pool, snapshot)
            raise

        return BookingConfirmation(booking=booking, assignment=result)

    @staticmethod
    def _member_may_take(
        validator: BookingValidator,
        bookings: List[ExistingBooking],
        requested: TimeRange,
        now: datetime,
        **kwargs,
    ) -> bool:
        try:
            validator.validate(bookings, requested, now, **kwargs)
        except BookingRejectedError as exc:
            if exc.reason not in HOST_SPECIFIC_REASONS:
                raise
            return False
        return True

    async def _commit(self, host_id: str, requested: TimeRange) -> ExistingBooking:
        booking = ExistingBooking(
            time_range=requested,
            status=BookingStatus.CONFIRMED,
            host_id=host_id,
            booking_id=uuid.uuid4().hex,
        )
        return await self._store.insert_booking(booking)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @staticmethod
    def _snapshot(pool: TeamPool) -> Tuple:
        members = {m.member_id: (m.last_assigned_at, m.assignment_count) for m in pool.members}
        return members, pool.streak_member_id, pool.streak_count

    @staticmethod
    def _restore(pool: TeamPool, snapshot: Tuple) -> None:
        members, pool.streak_member_id, pool.streak_count = snapshot
        for member in pool.members:
            member.last_assigned_at, member.assignment_count = members[member.member_id]

    @staticmethod
    def _group_by_host(
        host_ids: Sequence[str],
        bookings: Sequence[ExistingBooking],
    ) -> Dict[str, List[ExistingBooking]]:
        """
        Ensure every requested host appears in the map.

        Stores omit hosts without bookings; we normalise that to an explicit
        empty list for deterministic downstream behaviour.
        """
        grouped: Dict[str, List[ExistingBooking]] = {host_id: [] for host_id in host_ids}

        for booking in bookings:
            if booking.host_id in grouped:
                grouped[booking.host_id].append(booking)
            else:
                logger.warning("Ignoring booking %s for unrequested host %s", booking.booking_id, booking.host_id)

        return grouped
