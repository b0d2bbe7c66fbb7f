"""
Main CLI application using Typer.
"""

import asyncio
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Annotated, Optional

import pytz
import typer
from dateutil.parser import isoparse
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__
from ..adapters.booking_store import InMemoryBookingStore
from ..config import AppConfig, LinkSettings, get_default_config_path
from ..domain.exceptions import SchedulerError
from ..domain.models import AssignmentMethod, TimeRange
from ..domain.slot_calculator import localize
from ..logging_setup import configure_logging
from ..services.booking_service import BookingService

app = typer.Typer(
    name="smartscheduler",
    help="Compute bookable slots and assign team bookings",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
NowOption = Annotated[
    Optional[str],
    typer.Option("--now", help="Reference time (ISO 8601) instead of the current time."),
]


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    configure_logging(config.log_level)
    return config


def _load_store(config: AppConfig) -> InMemoryBookingStore:
    if config.bookings_file is None:
        return InMemoryBookingStore()
    return InMemoryBookingStore.from_json(config.bookings_file, timezone=config.timezone)


def _parse_instant(value: Optional[str], tz: pytz.BaseTzInfo) -> datetime:
    if value is None:
        return datetime.now(tz)
    return localize(isoparse(value), tz)


def _determine_range(
    *,
    tz: pytz.BaseTzInfo,
    now: datetime,
    start_option: Optional[str],
    end_option: Optional[str],
):
    """
    Resolve the search window from YYYY-MM-DD options.
    Defaults to today through the seventh day after the start.
    """
    if start_option:
        start_day = isoparse(start_option).date()
    else:
        start_day = now.date()

    if end_option:
        end_day = isoparse(end_option).date()
    else:
        end_day = start_day + timedelta(days=7)

    start = tz.localize(datetime.combine(start_day, time.min))
    end = tz.localize(datetime.combine(end_day, time.max))
    return start, end


def _fail(message: object) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(str(message))}")
    raise typer.Exit(1)


@app.command()
def slots(
    link_slug: Annotated[str, typer.Argument(help="Slug of the booking link")],
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    show_all: Annotated[bool, typer.Option("--all", "-a", help="Also show unavailable slots.")] = False,
    now_option: NowOption = None,
):
    """
    List bookable slots of a booking link.

    Examples:

        smartscheduler slots intro-call

        smartscheduler slots team-demo --start 2024-11-25 --end 2024-11-29 --all
    """
    try:
        config = _load_config(config_file)
        link = config.resolve_link(link_slug)
        link_config = link.to_booking_link_config(config.timezone)
        tz = link_config.tzinfo()
        now = _parse_instant(now_option, tz)
        range_start, range_end = _determine_range(
            tz=tz, now=now, start_option=start, end_option=end
        )

        host_ids = config.host_ids_for(link)
        service = BookingService(_load_store(config))
        found = asyncio.run(
            service.find_slots(
                config=link_config,
                host_ids=host_ids,
                range_start=range_start,
                range_end=range_end,
                now=now,
                time_blocks=config.time_blocks_for(host_ids, link_config.timezone),
                date_overrides=link.to_date_overrides(),
                include_unavailable=show_all,
            )
        )
    except (FileNotFoundError, ValueError, SchedulerError) as e:
        _fail(e)

    console.print()
    console.print(f"[bold cyan]{escape(link.title or link.slug)}[/bold cyan] ({link.duration_minutes} min, {tz.zone})")
    console.print(f"   Range: {range_start.strftime('%d.%m.%Y')} - {range_end.strftime('%d.%m.%Y')}\n")

    if not found:
        console.print(
            "[yellow]No bookable slots found.[/yellow]\n"
            "Try a longer range or check the link's working days."
        )
        return

    available = [slot for slot in found if slot.available]
    console.print(f"[bold green]{len(available)} available slot(s):[/bold green]\n")
    for slot in found:
        if slot.available:
            console.print(f"  {slot.format_display()}")
        else:
            console.print(f"  [dim strike]{slot.format_display()}[/dim strike]")
    console.print()


@app.command()
def book(
    link_slug: Annotated[str, typer.Argument(help="Slug of the booking link")],
    start: Annotated[str, typer.Argument(help="Requested start (ISO 8601)")],
    config_file: ConfigOption = None,
    member: Annotated[Optional[str], typer.Option("--member", "-m", help="Team member for specific assignment.")] = None,
    now_option: NowOption = None,
):
    """
    Check a booking request and show which host would receive it.

    Runs against the configured bookings file without writing to it.
    """
    try:
        config = _load_config(config_file)
        link = config.resolve_link(link_slug)
        link_config = link.to_booking_link_config(config.timezone)
        tz = link_config.tzinfo()
        now = _parse_instant(now_option, tz)
        requested_start = localize(isoparse(start), tz)
        requested = TimeRange(
            start=requested_start,
            end=requested_start + timedelta(minutes=link_config.duration_minutes),
        )

        service = BookingService(_load_store(config))
        confirmation = asyncio.run(_book(service, config, link, link_config, requested, now, member))
    except (FileNotFoundError, ValueError, SchedulerError) as e:
        _fail(e)

    booking = confirmation.booking
    table = Table(title="Booking accepted", show_header=False)
    table.add_column("Field", style="bold yellow")
    table.add_column("Value")
    table.add_row("Link", link.slug)
    table.add_row("Time", str(booking.time_range))
    table.add_row("Host", booking.host_id)
    if confirmation.assignment is not None:
        table.add_row("Assignment", confirmation.assignment.method.value)

    console.print()
    console.print(table)
    console.print()


async def _book(service, config, link: LinkSettings, link_config, requested, now, member):
    constraints = dict(
        time_blocks=config.time_blocks_for(config.host_ids_for(link), link_config.timezone),
        date_overrides=link.to_date_overrides(),
    )
    if not link.is_team_link:
        return await service.book(
            config=link_config, requested=requested, now=now, host_id=link.host, **constraints
        )

    team = config.find_team(link.team)
    method = AssignmentMethod.SPECIFIC if member else AssignmentMethod(team.assignment_method)
    pool = team.to_team_pool(link_config.buffer_before_minutes, link_config.buffer_after_minutes)
    return await service.book(
        config=link_config,
        requested=requested,
        now=now,
        pool=pool,
        method=method,
        specific_member_id=member,
        **constraints,
    )


@app.command()
def list_links(config_file: ConfigOption = None):
    """
    List all configured booking links.
    """
    try:
        config = _load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        _fail(e)

    if not config.links:
        console.print("[yellow]No booking links defined in the config file.[/yellow]")
        return

    table = Table(
        title="Booking links",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Slug", style="bold yellow")
    table.add_column("Title")
    table.add_column("Duration")
    table.add_column("Host / Team", style="dim")

    for link in config.links:
        owner = f"team {link.team}" if link.is_team_link else link.host
        table.add_row(link.slug, link.title, f"{link.duration_minutes} min", owner)

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    console.print(f"\n[bold cyan]smartscheduler[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
