"""
Tests for the booking service, using the in-memory store.
"""

import asyncio
from datetime import date, datetime, time

import pytest
import pytz

from smartscheduler.adapters.booking_store import InMemoryBookingStore
from smartscheduler.domain.exceptions import (
    BookingRejectedError,
    DoubleBookingError,
    HostUnavailableError,
    InvalidConfigError,
    NoAvailableHostError,
)
from smartscheduler.domain.models import (
    AssignmentMethod,
    BookingLinkConfig,
    DateOverride,
    ExistingBooking,
    TeamMember,
    TeamPool,
    TimeRange,
    WorkingHours,
)
from smartscheduler.services.booking_service import BookingService

BERLIN = pytz.timezone("Europe/Berlin")


def at(text: str) -> datetime:
    return BERLIN.localize(datetime.strptime(text, "%Y-%m-%d %H:%M"))


def span(start: str, end: str) -> TimeRange:
    return TimeRange(start=at(start), end=at(end))


def booked(host: str, start: str, end: str) -> ExistingBooking:
    return ExistingBooking(time_range=span(start, end), host_id=host)


CONFIG = BookingLinkConfig(
    duration_minutes=30,
    working_hours=WorkingHours(start_time=time(9, 0), end_time=time(12, 0)),
    buffer_after_minutes=15,
    lead_time_minutes=60,
    max_bookings_per_day=2,
    timezone="Europe/Berlin",
)
NOW = at("2024-11-25 08:00")
MONDAY = (at("2024-11-25 00:00"), at("2024-11-25 23:59"))


def make_team(*member_ids: str) -> TeamPool:
    return TeamPool(members=[TeamMember(member_id=m) for m in member_ids], name="sales")


class FailingStore(InMemoryBookingStore):
    """Store whose writes always lose the race."""

    async def insert_booking(self, booking):
        raise DoubleBookingError("taken by a concurrent writer")


class TestFetchBookings:

    def test_every_host_has_an_entry(self):
        store = InMemoryBookingStore([booked("anna", "2024-11-25 10:00", "2024-11-25 10:30")])
        service = BookingService(store)

        grouped = asyncio.run(
            service.fetch_bookings(host_ids=["anna", "ben"], range_start=MONDAY[0], range_end=MONDAY[1])
        )

        assert len(grouped["anna"]) == 1
        assert grouped["ben"] == []


class TestFindSlots:
    """Tests for slot lookup through the service."""

    def test_single_host(self):
        store = InMemoryBookingStore([booked("anna", "2024-11-25 10:00", "2024-11-25 10:30")])
        service = BookingService(store)

        slots = asyncio.run(
            service.find_slots(
                config=CONFIG, host_ids=["anna"], range_start=MONDAY[0], range_end=MONDAY[1], now=NOW
            )
        )

        assert [s.start.strftime("%H:%M") for s in slots] == ["09:00", "09:30", "11:00", "11:30"]

    def test_team_union(self):
        """A slot is offered when any host is free."""
        store = InMemoryBookingStore([booked("anna", "2024-11-25 10:00", "2024-11-25 10:30")])
        service = BookingService(store)

        slots = asyncio.run(
            service.find_slots(
                config=CONFIG, host_ids=["anna", "ben"], range_start=MONDAY[0], range_end=MONDAY[1], now=NOW
            )
        )

        assert [s.start.strftime("%H:%M") for s in slots] == [
            "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
        ]

    def test_time_blocks_per_host(self):
        store = InMemoryBookingStore()
        service = BookingService(store)

        slots = asyncio.run(
            service.find_slots(
                config=CONFIG,
                host_ids=["anna"],
                range_start=MONDAY[0],
                range_end=MONDAY[1],
                now=NOW,
                time_blocks={"anna": [span("2024-11-25 09:00", "2024-11-25 11:00")]},
            )
        )

        assert [s.start.strftime("%H:%M") for s in slots] == ["11:00", "11:30"]

    def test_naive_range_is_read_in_link_timezone(self):
        store = InMemoryBookingStore([booked("anna", "2024-11-25 10:00", "2024-11-25 10:30")])
        service = BookingService(store)

        slots = asyncio.run(
            service.find_slots(
                config=CONFIG,
                host_ids=["anna"],
                range_start=datetime(2024, 11, 25),
                range_end=datetime(2024, 11, 25, 23, 59),
                now=datetime(2024, 11, 25, 8, 0),
            )
        )

        assert [s.start.strftime("%H:%M") for s in slots] == ["09:00", "09:30", "11:00", "11:30"]
        assert slots[0].start == at("2024-11-25 09:00")

    def test_no_hosts_raises(self):
        service = BookingService(InMemoryBookingStore())

        with pytest.raises(InvalidConfigError):
            asyncio.run(
                service.find_slots(
                    config=CONFIG, host_ids=[], range_start=MONDAY[0], range_end=MONDAY[1], now=NOW
                )
            )


class TestSingleHostBooking:
    """Tests for booking a single-host link."""

    def test_book_stores_booking(self):
        store = InMemoryBookingStore()
        service = BookingService(store)

        confirmation = asyncio.run(
            service.book(config=CONFIG, requested=span("2024-11-25 09:00", "2024-11-25 09:30"), now=NOW, host_id="anna")
        )

        assert confirmation.booking.host_id == "anna"
        assert confirmation.booking.booking_id
        assert confirmation.assignment is None
        assert store.all_bookings() == [confirmation.booking]

    def test_second_identical_booking_is_rejected(self):
        service = BookingService(InMemoryBookingStore())
        requested = span("2024-11-25 09:00", "2024-11-25 09:30")

        asyncio.run(service.book(config=CONFIG, requested=requested, now=NOW, host_id="anna"))

        with pytest.raises(BookingRejectedError) as excinfo:
            asyncio.run(service.book(config=CONFIG, requested=requested, now=NOW, host_id="anna"))

        assert excinfo.value.reason == "conflict"

    def test_naive_request_is_read_in_link_timezone(self):
        store = InMemoryBookingStore([booked("anna", "2024-11-25 10:00", "2024-11-25 10:30")])
        service = BookingService(store)
        requested = TimeRange(start=datetime(2024, 11, 25, 9, 0), end=datetime(2024, 11, 25, 9, 30))

        confirmation = asyncio.run(service.book(config=CONFIG, requested=requested, now=NOW, host_id="anna"))

        assert confirmation.booking.time_range.start == at("2024-11-25 09:00")

    def test_closed_day_cannot_be_booked(self):
        service = BookingService(InMemoryBookingStore())
        closed = DateOverride(day=date(2024, 11, 25), available=False)
        requested = span("2024-11-25 09:00", "2024-11-25 09:30")

        offered = asyncio.run(
            service.find_slots(
                config=CONFIG,
                host_ids=["anna"],
                range_start=MONDAY[0],
                range_end=MONDAY[1],
                now=NOW,
                date_overrides=[closed],
            )
        )
        with pytest.raises(BookingRejectedError) as excinfo:
            asyncio.run(
                service.book(config=CONFIG, requested=requested, now=NOW, host_id="anna", date_overrides=[closed])
            )

        assert offered == []
        assert excinfo.value.reason == "non_working_day"

    def test_time_block_prevents_booking(self):
        service = BookingService(InMemoryBookingStore())

        with pytest.raises(BookingRejectedError) as excinfo:
            asyncio.run(
                service.book(
                    config=CONFIG,
                    requested=span("2024-11-25 09:00", "2024-11-25 09:30"),
                    now=NOW,
                    host_id="anna",
                    time_blocks={"anna": [span("2024-11-25 09:00", "2024-11-25 10:00")]},
                )
            )

        assert excinfo.value.reason == "conflict"

    def test_concurrent_requests_commit_once(self):
        store = InMemoryBookingStore()
        service = BookingService(store)
        requested = span("2024-11-25 09:00", "2024-11-25 09:30")

        async def race():
            return await asyncio.gather(
                service.book(config=CONFIG, requested=requested, now=NOW, host_id="anna"),
                service.book(config=CONFIG, requested=requested, now=NOW, host_id="anna"),
                return_exceptions=True,
            )

        results = asyncio.run(race())

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], BookingRejectedError)
        assert len(store.all_bookings()) == 1

    def test_needs_a_target(self):
        service = BookingService(InMemoryBookingStore())

        with pytest.raises(InvalidConfigError):
            asyncio.run(
                service.book(config=CONFIG, requested=span("2024-11-25 09:00", "2024-11-25 09:30"), now=NOW)
            )

    def test_rejects_host_and_pool_together(self):
        service = BookingService(InMemoryBookingStore())

        with pytest.raises(InvalidConfigError):
            asyncio.run(
                service.book(
                    config=CONFIG,
                    requested=span("2024-11-25 09:00", "2024-11-25 09:30"),
                    now=NOW,
                    host_id="anna",
                    pool=make_team("anna"),
                )
            )


class TestTeamBooking:
    """Tests for booking a team link."""

    def test_round_robin_rotates_and_updates_pool(self):
        store = InMemoryBookingStore()
        service = BookingService(store)
        pool = make_team("anna", "ben")
        requested = span("2024-11-25 09:00", "2024-11-25 09:30")

        first = asyncio.run(service.book(config=CONFIG, requested=requested, now=NOW, pool=pool))
        second = asyncio.run(service.book(config=CONFIG, requested=requested, now=NOW, pool=pool))

        assert first.booking.host_id == "anna"
        assert second.booking.host_id == "ben"
        assert first.assignment.method == AssignmentMethod.ROUND_ROBIN
        assert pool.find_member("anna").last_assigned_at == requested.start
        assert pool.find_member("ben").assignment_count == 1

        with pytest.raises(NoAvailableHostError):
            asyncio.run(service.book(config=CONFIG, requested=requested, now=NOW, pool=pool))

    def test_member_at_daily_cap_is_skipped(self):
        store = InMemoryBookingStore([
            booked("anna", "2024-11-25 11:00", "2024-11-25 11:30"),
            booked("anna", "2024-11-25 11:30", "2024-11-25 12:00"),
        ])
        service = BookingService(store)

        confirmation = asyncio.run(
            service.book(
                config=CONFIG,
                requested=span("2024-11-25 09:00", "2024-11-25 09:30"),
                now=NOW,
                pool=make_team("anna", "ben"),
                method=AssignmentMethod.POOLED,
            )
        )

        assert confirmation.booking.host_id == "ben"

    def test_member_with_time_block_is_skipped(self):
        service = BookingService(InMemoryBookingStore())

        confirmation = asyncio.run(
            service.book(
                config=CONFIG,
                requested=span("2024-11-25 09:00", "2024-11-25 09:30"),
                now=NOW,
                pool=make_team("anna", "ben"),
                time_blocks={"anna": [span("2024-11-25 08:00", "2024-11-25 12:00")]},
            )
        )

        assert confirmation.booking.host_id == "ben"

    def test_closed_day_rejected_for_team(self):
        service = BookingService(InMemoryBookingStore())

        with pytest.raises(BookingRejectedError) as excinfo:
            asyncio.run(
                service.book(
                    config=CONFIG,
                    requested=span("2024-11-25 09:00", "2024-11-25 09:30"),
                    now=NOW,
                    pool=make_team("anna", "ben"),
                    date_overrides=[DateOverride(day=date(2024, 11, 25), available=False)],
                )
            )

        assert excinfo.value.reason == "non_working_day"

    def test_specific_member_busy(self):
        store = InMemoryBookingStore([booked("ben", "2024-11-25 09:00", "2024-11-25 10:00")])
        service = BookingService(store)

        with pytest.raises(HostUnavailableError):
            asyncio.run(
                service.book(
                    config=CONFIG,
                    requested=span("2024-11-25 09:30", "2024-11-25 10:00"),
                    now=NOW,
                    pool=make_team("anna", "ben"),
                    method=AssignmentMethod.SPECIFIC,
                    specific_member_id="ben",
                )
            )

    def test_host_independent_rules_are_reported(self):
        service = BookingService(InMemoryBookingStore())

        with pytest.raises(BookingRejectedError) as excinfo:
            asyncio.run(
                service.book(
                    config=CONFIG,
                    requested=span("2024-11-25 08:30", "2024-11-25 09:00"),
                    now=NOW,
                    pool=make_team("anna"),
                )
            )

        assert excinfo.value.reason == "lead_time"

    def test_failed_commit_rolls_back_assignment(self):
        service = BookingService(FailingStore())
        pool = make_team("anna", "ben")

        with pytest.raises(DoubleBookingError):
            asyncio.run(
                service.book(
                    config=CONFIG, requested=span("2024-11-25 09:00", "2024-11-25 09:30"), now=NOW, pool=pool
                )
            )

        assert all(member.last_assigned_at is None for member in pool.members)
        assert all(member.assignment_count == 0 for member in pool.members)
        assert pool.streak_member_id is None
        assert pool.streak_count == 0
