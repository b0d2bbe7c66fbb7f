"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import date, datetime, time
from pathlib import Path
from typing import Dict, List, Literal, Optional

import pytz
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import (
    BookingLinkConfig,
    DateOverride,
    TeamMember,
    TeamPool,
    TimeRange,
    WorkingHours,
    localize,
)


def _parse_clock(value: str) -> time:
    try:
        hour, minute = (int(part) for part in value.split(":"))
        return time(hour=hour, minute=minute)
    except ValueError as exc:
        raise ValueError(f"Expected a time as HH:MM, got '{value}'") from exc


class HoursSettings(BaseModel):
    """Working hours of one day as HH:MM strings."""
    start: str = "09:00"
    end: str = "17:00"

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        """Validate the HH:MM format."""
        _parse_clock(value)
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "HoursSettings":
        """Ensure the configured window opens before it closes."""
        if _parse_clock(self.end) <= _parse_clock(self.start):
            raise ValueError(f"end ({self.end}) must be later than start ({self.start})")
        return self

    def to_working_hours(self) -> WorkingHours:
        return WorkingHours(start_time=_parse_clock(self.start), end_time=_parse_clock(self.end))


class DateOverrideSettings(BaseModel):
    """Schedule replacement for a single date (holiday, extra opening)."""
    day: date
    available: bool = False
    hours: Optional[HoursSettings] = None
    label: Optional[str] = None

    def to_date_override(self) -> DateOverride:
        hours = self.hours.to_working_hours() if self.hours is not None else None
        return DateOverride(day=self.day, available=self.available, hours=hours, label=self.label)


class TimeBlockSettings(BaseModel):
    """A period in which a host takes no bookings."""
    host: str
    start: datetime
    end: datetime
    label: Optional[str] = None

    @model_validator(mode="after")
    def validate_order(self) -> "TimeBlockSettings":
        if (self.start.tzinfo is None) != (self.end.tzinfo is None):
            raise ValueError("start and end must both carry an offset or both omit it")
        if self.end <= self.start:
            raise ValueError(f"Time block of '{self.host}' must end after it starts")
        return self

    def to_time_range(self, tz: pytz.BaseTzInfo) -> TimeRange:
        """Resolve the block; times without offset are read in ``tz``."""
        return TimeRange(start=localize(self.start, tz), end=localize(self.end, tz))


class LinkSettings(BaseModel):
    """Booking link configuration."""
    slug: str
    title: str = ""
    host: Optional[str] = None
    team: Optional[str] = None
    duration_minutes: int = 30
    availability_window_days: int = 30
    working_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])  # Monday to Friday
    hours: HoursSettings = Field(default_factory=HoursSettings)
    weekday_hours: Dict[int, HoursSettings] = Field(default_factory=dict)
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    lead_time_minutes: int = 60
    max_bookings_per_day: int = 0
    start_time_increment_minutes: int = 30
    timezone: Optional[str] = None
    date_overrides: List[DateOverrideSettings] = Field(default_factory=list)

    @field_validator("duration_minutes", "start_time_increment_minutes")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure durations and increments are positive."""
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator(
        "availability_window_days",
        "buffer_before_minutes",
        "buffer_after_minutes",
        "lead_time_minutes",
        "max_bookings_per_day",
    )
    @classmethod
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, value: List[int]) -> List[int]:
        """Ensure weekdays are in valid range and deduplicated."""
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"working_days must be between 0 and 6, got {invalid_days}")
        return sorted(set(value))

    @field_validator("weekday_hours")
    @classmethod
    def validate_weekday_keys(cls, value: Dict[int, HoursSettings]) -> Dict[int, HoursSettings]:
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"weekday_hours keys must be between 0 and 6, got {invalid_days}")
        return value

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("date_overrides")
    @classmethod
    def validate_override_days(cls, value: List[DateOverrideSettings]) -> List[DateOverrideSettings]:
        days = [override.day for override in value]
        duplicates = sorted({day for day in days if days.count(day) > 1})
        if duplicates:
            raise ValueError(f"Duplicate date overrides: {', '.join(str(d) for d in duplicates)}")
        return value

    @model_validator(mode="after")
    def validate_owner(self) -> "LinkSettings":
        """A link is served either by one host or by one team."""
        if (self.host is None) == (self.team is None):
            raise ValueError(f"Link '{self.slug}' must define exactly one of host or team")
        return self

    @property
    def is_team_link(self) -> bool:
        return self.team is not None

    def to_booking_link_config(self, default_timezone: str) -> BookingLinkConfig:
        """Build the domain configuration for this link."""
        return BookingLinkConfig(
            duration_minutes=self.duration_minutes,
            working_days=frozenset(self.working_days),
            working_hours=self.hours.to_working_hours(),
            weekday_hours={day: hours.to_working_hours() for day, hours in self.weekday_hours.items()},
            availability_window_days=self.availability_window_days,
            buffer_before_minutes=self.buffer_before_minutes,
            buffer_after_minutes=self.buffer_after_minutes,
            lead_time_minutes=self.lead_time_minutes,
            max_bookings_per_day=self.max_bookings_per_day,
            start_time_increment_minutes=self.start_time_increment_minutes,
            timezone=self.timezone or default_timezone,
        )

    def to_date_overrides(self) -> List[DateOverride]:
        return [override.to_date_override() for override in self.date_overrides]


class MemberSettings(BaseModel):
    """Team member configuration."""
    id: str
    weight: int = 1

    @field_validator("weight")
    @classmethod
    def validate_weight(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"weight must be at least 1, got {value}")
        return value


class TeamSettings(BaseModel):
    """Team configuration."""
    name: str
    assignment_method: Literal["round-robin", "pooled", "specific"] = "round-robin"
    members: List[MemberSettings]

    @field_validator("members")
    @classmethod
    def validate_members(cls, value: List[MemberSettings]) -> List[MemberSettings]:
        """Ensure the team is not empty and member ids are unique."""
        if not value:
            raise ValueError("A team needs at least one member")
        seen: set[str] = set()
        for member in value:
            if member.id in seen:
                raise ValueError(f"Duplicate team member detected: {member.id}")
            seen.add(member.id)
        return value

    def to_team_pool(self, buffer_before_minutes: int = 0, buffer_after_minutes: int = 0) -> TeamPool:
        """Build a fresh pool snapshot with no assignment history."""
        return TeamPool(
            name=self.name,
            members=[TeamMember(member_id=m.id, weight=m.weight) for m in self.members],
            buffer_before_minutes=buffer_before_minutes,
            buffer_after_minutes=buffer_after_minutes,
        )


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "UTC"
    log_level: str = "WARNING"
    bookings_file: Optional[Path] = None
    links: List[LinkSettings] = Field(default_factory=list)
    teams: List[TeamSettings] = Field(default_factory=list)
    time_blocks: List[TimeBlockSettings] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def validate_references(self) -> "AppConfig":
        """Ensure slugs and team names are unique and links reference known teams."""
        slugs = [link.slug.lower() for link in self.links]
        duplicates = sorted({slug for slug in slugs if slugs.count(slug) > 1})
        if duplicates:
            raise ValueError(f"Duplicate link slug(s) detected: {', '.join(duplicates)}")

        team_names = [team.name.lower() for team in self.teams]
        if len(team_names) != len(set(team_names)):
            raise ValueError("Duplicate team names detected")

        for link in self.links:
            if link.team is not None and link.team.lower() not in team_names:
                raise ValueError(f"Link '{link.slug}' references unknown team '{link.team}'")
        return self

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)

        # Relative bookings files are resolved against the config file location.
        if config.bookings_file is not None and not config.bookings_file.is_absolute():
            config.bookings_file = config_path.parent / config.bookings_file

        return config

    def find_link(self, slug: str) -> LinkSettings | None:
        """Find a booking link by its slug."""
        for link in self.links:
            if link.slug.lower() == slug.lower():
                return link
        return None

    def find_team(self, name: str) -> TeamSettings | None:
        """Find a team by its name."""
        for team in self.teams:
            if team.name.lower() == name.lower():
                return team
        return None

    def resolve_link(self, slug: str) -> LinkSettings:
        """
        Resolve a link slug, raising for unknown ones.

        Raises:
            ValueError: If the slug cannot be resolved
        """
        link = self.find_link(slug)
        if link is None:
            known = ", ".join(l.slug for l in self.links) or "none"
            raise ValueError(f"Unknown booking link: '{slug}'. Configured links: {known}")
        return link

    def host_ids_for(self, link: LinkSettings) -> List[str]:
        """Return the hosts serving a link."""
        if link.team is None:
            return [link.host]
        return [member.id for member in self.find_team(link.team).members]

    def time_blocks_for(self, host_ids: List[str], timezone: str) -> Dict[str, List[TimeRange]]:
        """
        Group the configured time blocks of the given hosts.

        Args:
            host_ids: Hosts to collect blocks for
            timezone: Zone in which times without offset are read
        """
        tz = pytz.timezone(timezone)
        blocks: Dict[str, List[TimeRange]] = {host_id: [] for host_id in host_ids}
        for block in self.time_blocks:
            if block.host in blocks:
                blocks[block.host].append(block.to_time_range(tz))
        return blocks


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
