"""
Availability Engine.

Walks business hours in fixed steps and keeps the slots the calendar
reports as free. One busy-interval query per candidate, issued in order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Awaitable, Callable, Optional, Sequence

logger = logging.getLogger(__name__)

BusyLookup = Callable[[datetime, datetime], Awaitable[Sequence]]
"""Async callable returning the busy intervals overlapping [start, end)."""

WEEKEND = {5, 6}  # Saturday, Sunday


@dataclass(frozen=True)
class AvailabilityWindow:
    """Business-hours configuration for slot computation."""

    business_start: time
    business_end: time
    slot_duration_minutes: int
    days_ahead: int = 7

    @classmethod
    def from_strings(
        cls,
        business_start: str,
        business_end: str,
        slot_duration_minutes: int,
        days_ahead: int = 7,
    ) -> "AvailabilityWindow":
        """Build from ``HH:MM`` strings as stored on the user."""
        return cls(
            business_start=parse_time_of_day(business_start),
            business_end=parse_time_of_day(business_end),
            slot_duration_minutes=slot_duration_minutes,
            days_ahead=days_ahead,
        )


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (seconds optional) into a time."""
    return time.fromisoformat(value.strip())


def day_slots(
    day: datetime,
    business_start: time,
    business_end: time,
    slot_duration_minutes: int,
) -> list[tuple[datetime, datetime]]:
    """All [start, end) candidates for one day that fit inside business hours.

    ``day`` is any aware datetime on the wanted local date.
    """
    if slot_duration_minutes <= 0 or business_start >= business_end:
        return []

    tz = day.tzinfo
    day_start = datetime.combine(day.date(), business_start, tzinfo=tz)
    day_end = datetime.combine(day.date(), business_end, tzinfo=tz)
    step = timedelta(minutes=slot_duration_minutes)

    slots = []
    current = day_start
    while current < day_end:
        slot_end = current + step
        if slot_end <= day_end:
            slots.append((current, slot_end))
        current = slot_end
    return slots


async def find_available_slots(
    business_start: time,
    business_end: time,
    slot_duration_minutes: int,
    days_ahead: int,
    busy_lookup: BusyLookup,
    *,
    now: datetime,
    tz: Optional[tzinfo] = None,
    limit: Optional[int] = None,
    earliest: Optional[datetime] = None,
) -> list[datetime]:
    """Free slot start instants for the next ``days_ahead`` days.

    Args:
        business_start: Opening time of day
        business_end: Closing time of day (a slot may end exactly here)
        slot_duration_minutes: Slot length and step
        days_ahead: Number of calendar days to scan, today included
        busy_lookup: Calendar query for busy intervals in a span
        now: Reference instant; day 0 is its local date
        tz: Local zone (defaults to ``now``'s zone)
        limit: Stop once this many slots are found
        earliest: Skip candidates starting before this instant

    Returns:
        Start instants ordered by day, then time of day
    """
    local_now = now.astimezone(tz) if tz is not None else now
    available: list[datetime] = []

    for offset in range(days_ahead):
        day = local_now + timedelta(days=offset)
        if day.weekday() in WEEKEND:
            continue

        for start, end in day_slots(day, business_start, business_end, slot_duration_minutes):
            if earliest is not None and start < earliest:
                continue

            busy = await busy_lookup(start, end)
            if not busy:
                available.append(start)
                if limit is not None and len(available) >= limit:
                    return available

    logger.debug(f"Found {len(available)} free slots over {days_ahead} days")
    return available


class AvailabilityEngine:
    """Binds a calendar's busy lookup to the slot search."""

    def __init__(self, busy_lookup: BusyLookup):
        self._busy_lookup = busy_lookup

    async def find_available_slots(
        self,
        window: AvailabilityWindow,
        *,
        now: datetime,
        tz: Optional[tzinfo] = None,
        limit: Optional[int] = None,
        earliest: Optional[datetime] = None,
    ) -> list[datetime]:
        return await find_available_slots(
            window.business_start,
            window.business_end,
            window.slot_duration_minutes,
            window.days_ahead,
            self._busy_lookup,
            now=now,
            tz=tz,
            limit=limit,
            earliest=earliest,
        )
