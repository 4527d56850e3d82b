"""Slot types for booking-field extraction."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional


@dataclass
class BookingFields:
    """Fields extracted from a booking message by LLM."""

    date: Optional[date] = None          # Parsed date
    time: Optional[time] = None          # Parsed time
    client_name: Optional[str] = None

    # Metadata
    raw_response: str = ""
    processing_time_ms: float = 0.0

    def has_any(self) -> bool:
        """Check if any field was extracted."""
        return any([self.date, self.time, self.client_name])

    @property
    def has_datetime(self) -> bool:
        """Both date and time are known, so a slot can be booked directly."""
        return self.date is not None and self.time is not None

    def start_at(self, tz: tzinfo) -> Optional[datetime]:
        """Requested start as an aware datetime in the given zone."""
        if not self.has_datetime:
            return None
        return datetime.combine(self.date, self.time, tzinfo=tz)

    def end_at(self, tz: tzinfo, duration_minutes: int) -> Optional[datetime]:
        start = self.start_at(tz)
        if start is None:
            return None
        return start + timedelta(minutes=duration_minutes)

    def to_dict(self) -> dict:
        """Convert to dict, excluding None values."""
        result = {}
        if self.date:
            result["date"] = self.date.isoformat()
        if self.time:
            result["time"] = self.time.strftime("%H:%M")
        if self.client_name:
            result["client_name"] = self.client_name
        return result
