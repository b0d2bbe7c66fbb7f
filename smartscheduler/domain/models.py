"""
Domain models for booking links, bookings, candidate slots and team pools.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional

import pytz

from .exceptions import HostUnavailableError, InvalidConfigError, NoAvailableHostError


def localize(dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """
    Express ``dt`` in ``tz``. Naive datetimes are read as wall-clock time in ``tz``.
    """
    if dt.tzinfo is None:
        return tz.localize(dt)
    return dt.astimezone(tz)


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another. Touching ranges do not overlap."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeRange") -> bool:
        """Check if another range lies completely inside this one."""
        return self.start <= other.start and other.end <= self.end

    def expand(self, before_minutes: int = 0, after_minutes: int = 0) -> "TimeRange":
        """Return a copy widened by the given padding on each side."""
        return TimeRange(
            start=self.start - timedelta(minutes=before_minutes),
            end=self.end + timedelta(minutes=after_minutes),
        )

    def in_timezone(self, tz: pytz.BaseTzInfo) -> "TimeRange":
        """
        Return the same instants expressed in another timezone.

        Naive bounds are read as wall-clock time in ``tz``.
        """
        return TimeRange(start=localize(self.start, tz), end=localize(self.end, tz))

    def __str__(self) -> str:
        return f"{self.start.strftime('%d.%m.%Y %H:%M')} - {self.end.strftime('%H:%M')}"


@dataclass(frozen=True)
class WorkingHours:
    """
    Wall-clock working hours for a single day.
    """
    start_time: time
    end_time: time

    def is_valid(self) -> bool:
        return self.start_time < self.end_time

    def for_day(self, day: date, tz: pytz.BaseTzInfo) -> TimeRange:
        """
        Get the working hours range for a specific calendar day in ``tz``.
        """
        start = tz.localize(datetime.combine(day, self.start_time))
        end = tz.localize(datetime.combine(day, self.end_time))
        return TimeRange(start=start, end=end)

    def __str__(self) -> str:
        return f"{self.start_time.strftime('%H:%M')} - {self.end_time.strftime('%H:%M')}"


DEFAULT_WORKING_HOURS = WorkingHours(start_time=time(9, 0), end_time=time(17, 0))


@dataclass(frozen=True)
class BookingLinkConfig:
    """
    Configuration of one bookable offering.

    Weekday indices follow ``datetime.weekday()``: 0=Monday, 6=Sunday.
    ``weekday_hours`` overrides ``working_hours`` for individual weekdays.
    """
    duration_minutes: int
    working_days: FrozenSet[int] = frozenset({0, 1, 2, 3, 4})
    working_hours: WorkingHours = DEFAULT_WORKING_HOURS
    weekday_hours: Mapping[int, WorkingHours] = field(default_factory=dict, hash=False)
    availability_window_days: int = 30
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    lead_time_minutes: int = 0
    max_bookings_per_day: int = 0  # 0 = unlimited
    start_time_increment_minutes: int = 30
    timezone: str = "UTC"

    def __post_init__(self):
        object.__setattr__(self, "working_days", frozenset(self.working_days))

    def validate(self) -> None:
        """
        Check the configuration for consistency.

        Raises:
            InvalidConfigError: If any field is out of range
        """
        if self.duration_minutes <= 0:
            raise InvalidConfigError(f"duration must be greater than zero, got {self.duration_minutes}")
        if self.start_time_increment_minutes <= 0:
            raise InvalidConfigError(
                f"start time increment must be greater than zero, got {self.start_time_increment_minutes}"
            )

        non_negative = {
            "availability_window_days": self.availability_window_days,
            "buffer_before_minutes": self.buffer_before_minutes,
            "buffer_after_minutes": self.buffer_after_minutes,
            "lead_time_minutes": self.lead_time_minutes,
            "max_bookings_per_day": self.max_bookings_per_day,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise InvalidConfigError(f"{name} must not be negative, got {value}")

        invalid_days = sorted(d for d in self.working_days if d not in range(7))
        if invalid_days:
            raise InvalidConfigError(f"working days must be between 0 and 6, got {invalid_days}")

        for weekday in self.working_days:
            hours = self.hours_for_weekday(weekday)
            if not hours.is_valid():
                raise InvalidConfigError(
                    f"working hours for weekday {weekday} must start before they end, got {hours}"
                )

        self.tzinfo()

    def tzinfo(self) -> pytz.BaseTzInfo:
        """Resolve the link's IANA timezone."""
        try:
            return pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError as exc:
            raise InvalidConfigError(f"Unknown timezone: {self.timezone}") from exc

    def hours_for_weekday(self, weekday: int) -> WorkingHours:
        return self.weekday_hours.get(weekday, self.working_hours)


@dataclass(frozen=True)
class DateOverride:
    """
    Replaces the weekly schedule for one calendar date.

    An unavailable override closes the whole day. An available override opens
    the day even if its weekday is not a working day, using ``hours`` when
    given and the link's hours otherwise.
    """
    day: date
    available: bool = False
    hours: Optional[WorkingHours] = None
    label: Optional[str] = None

    def __post_init__(self):
        if self.hours is not None and not self.hours.is_valid():
            raise InvalidConfigError(f"Override hours for {self.day} must start before they end")


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


@dataclass(frozen=True)
class ExistingBooking:
    """
    A booking already held by a host.

    Per-booking buffers, when set, replace the link's buffers for this
    booking's blocking radius.
    """
    time_range: TimeRange
    status: BookingStatus = BookingStatus.CONFIRMED
    host_id: Optional[str] = None
    booking_id: Optional[str] = None
    buffer_before_minutes: Optional[int] = None
    buffer_after_minutes: Optional[int] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED

    def blocking_range(self, default_before: int = 0, default_after: int = 0) -> TimeRange:
        """Return the interval during which no other booking may overlap."""
        before = default_before if self.buffer_before_minutes is None else self.buffer_before_minutes
        after = default_after if self.buffer_after_minutes is None else self.buffer_after_minutes
        return self.time_range.expand(before, after)


@dataclass(frozen=True)
class CandidateSlot:
    """
    A computed slot offered (or greyed out) for booking.
    """
    time_range: TimeRange
    available: bool = True

    @property
    def start(self) -> datetime:
        return self.time_range.start

    @property
    def end(self) -> datetime:
        return self.time_range.end

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, DD.MM.YYYY | HH:MM - HH:MM
        """
        weekday = self.start.strftime("%A")
        date_str = self.start.strftime("%d.%m.%Y")
        time_str = f"{self.start.strftime('%H:%M')} - {self.end.strftime('%H:%M')}"
        duration = self.time_range.duration_minutes()
        return f"{weekday}, {date_str} | {time_str} ({duration} min)"


@dataclass
class TeamMember:
    """
    A member of a team pool as seen by one assignment call.

    ``available`` lets the caller exclude a member for reasons other than
    booking conflicts, e.g. a reached daily cap.
    """
    member_id: str
    weight: int = 1
    last_assigned_at: Optional[datetime] = None
    assignment_count: int = 0
    bookings: List[ExistingBooking] = field(default_factory=list)
    available: bool = True

    def is_available_for(self, slot: TimeRange, buffer_before: int = 0, buffer_after: int = 0) -> bool:
        """Check whether the member is free for ``slot``."""
        if not self.available:
            return False
        return not any(
            booking.blocking_range(buffer_before, buffer_after).overlaps(slot)
            for booking in self.bookings
            if booking.is_confirmed
        )


@dataclass
class TeamPool:
    """
    Snapshot of a team's members and round-robin state.

    ``streak_member_id``/``streak_count`` track how many consecutive
    round-robin turns the current member has used out of its weight.
    """
    members: List[TeamMember]
    name: str = "team"
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    streak_member_id: Optional[str] = None
    streak_count: int = 0

    def __post_init__(self):
        seen: set[str] = set()
        for member in self.members:
            if member.member_id in seen:
                raise InvalidConfigError(f"Duplicate team member: {member.member_id}")
            if member.weight < 1:
                raise InvalidConfigError(
                    f"Weight of {member.member_id} must be at least 1, got {member.weight}"
                )
            seen.add(member.member_id)

    def find_member(self, member_id: str) -> TeamMember | None:
        for member in self.members:
            if member.member_id == member_id:
                return member
        return None

    def member_ids(self) -> List[str]:
        return [member.member_id for member in self.members]


class AssignmentMethod(str, Enum):
    ROUND_ROBIN = "round-robin"
    POOLED = "pooled"
    SPECIFIC = "specific"


class AssignmentOutcome(str, Enum):
    ASSIGNED = "assigned"
    HOST_UNAVAILABLE = "host_unavailable"
    NO_AVAILABLE_HOST = "no_available_host"


_OUTCOME_ERRORS: Dict[AssignmentOutcome, type] = {
    AssignmentOutcome.HOST_UNAVAILABLE: HostUnavailableError,
    AssignmentOutcome.NO_AVAILABLE_HOST: NoAvailableHostError,
}


@dataclass(frozen=True)
class AssignmentResult:
    """
    Outcome of one host assignment.

    ``member_id`` is set only when ``outcome`` is ``ASSIGNED``.
    """
    outcome: AssignmentOutcome
    slot: CandidateSlot
    method: AssignmentMethod
    member_id: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == AssignmentOutcome.ASSIGNED

    def raise_for_status(self) -> "AssignmentResult":
        """Return self on success, raise the matching error otherwise."""
        error = _OUTCOME_ERRORS.get(self.outcome)
        if error is not None:
            raise error(self.message)
        return self
