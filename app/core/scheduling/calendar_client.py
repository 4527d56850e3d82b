"""
HTTP client for Google Calendar.

Talks to the Calendar v3 REST API with a per-user OAuth access token:
- Listing events (busy intervals and sync)
- Creating, updating and cancelling events

Reads are retried on timeouts and connection errors; writes are not.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx

from app.config import get_settings
from app.core.errors import CalendarServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusyInterval:
    """A span the calendar reports as occupied."""

    start: datetime
    end: datetime


@dataclass
class CalendarEvent:
    """Event read back from Google Calendar."""

    event_id: str
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[datetime] = None  # None for all-day events
    end: Optional[datetime] = None
    status: str = "confirmed"

    @classmethod
    def from_dict(cls, data: dict) -> "CalendarEvent":
        """Create from an events.list item."""
        return cls(
            event_id=data.get("id", ""),
            summary=data.get("summary"),
            description=data.get("description"),
            start=_parse_datetime((data.get("start") or {}).get("dateTime")),
            end=_parse_datetime((data.get("end") or {}).get("dateTime")),
            status=data.get("status", "confirmed"),
        )


@dataclass
class CalendarResult:
    """Result of a calendar mutation."""

    success: bool
    event_id: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[str] = None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as returned by the API."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable calendar timestamp: {value}")
        return None


class GoogleCalendarClient:
    """
    HTTP client for one user's Google Calendar.

    Endpoints used:
    - GET /calendars/{id}/events - List events in a window
    - POST /calendars/{id}/events - Create event
    - PATCH /calendars/{id}/events/{event_id} - Update event
    - DELETE /calendars/{id}/events/{event_id} - Cancel event
    """

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        timezone: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        read_retries: Optional[int] = None,
    ):
        """Initialize client.

        Args:
            access_token: OAuth access token for the user's calendar
            calendar_id: Calendar to operate on
            timezone: IANA zone written on created events
            base_url: API root (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
            read_retries: Extra attempts for idempotent reads
        """
        settings = get_settings()
        self.access_token = access_token
        self.calendar_id = calendar_id or "primary"
        self.timezone = timezone or settings.default_timezone
        self.base_url = base_url or settings.google_calendar_api_url
        self.timeout = timeout or settings.external_timeout_seconds
        self.read_retries = (
            settings.external_read_retries if read_retries is None else read_retries
        )
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def _events_path(self) -> str:
        return f"/calendars/{self.calendar_id}/events"

    # === Reads ===

    async def list_events(self, time_min: datetime, time_max: datetime) -> list[CalendarEvent]:
        """List single events overlapping [time_min, time_max), ordered by start.

        Raises:
            CalendarServiceError: API unreachable or returned an error
        """
        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        events: list[CalendarEvent] = []
        page_token: Optional[str] = None

        while True:
            if page_token:
                params["pageToken"] = page_token
            data = await self._get_with_retry(self._events_path, params)
            events.extend(CalendarEvent.from_dict(item) for item in data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return [e for e in events if e.status != "cancelled"]

    async def list_busy_intervals(self, time_min: datetime, time_max: datetime) -> list[BusyInterval]:
        """Occupied spans overlapping the window, ordered by start.

        All-day events block the whole queried window.
        """
        events = await self.list_events(time_min, time_max)
        return [
            BusyInterval(start=e.start or time_min, end=e.end or time_max)
            for e in events
        ]

    async def _get_with_retry(self, path: str, params: dict) -> dict[str, Any]:
        client = await self._get_client()
        attempts = self.read_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                response = await client.get(path, params=params)
                response.raise_for_status()
                return response.json()
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                logger.warning(f"Calendar read failed (attempt {attempt + 1}/{attempts}): {e}")
            except httpx.HTTPStatusError as e:
                logger.error(f"Calendar API error {e.response.status_code}: {e.response.text}")
                raise CalendarServiceError(f"HTTP {e.response.status_code}") from e
            except ValueError as e:
                logger.error(f"Calendar API returned a non-JSON body: {e}")
                raise CalendarServiceError("Invalid response body") from e

        raise CalendarServiceError(f"Calendar unreachable: {last_error}")

    # === Writes ===

    async def create_event(
        self,
        summary: str,
        description: Optional[str],
        start: datetime,
        end: datetime,
    ) -> CalendarResult:
        """Create an event. Not retried."""
        client = await self._get_client()

        payload = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }

        try:
            response = await client.post(self._events_path, json=payload)

            if response.status_code in (200, 201):
                data = response.json()
                event_id = data.get("id") if isinstance(data, dict) else None
                if not event_id:
                    logger.error(f"Calendar create returned no event id: {response.text}")
                    return CalendarResult(
                        success=False,
                        error_code="invalid_response",
                        message="Event id missing from response",
                    )
                logger.info(f"Calendar event created: {event_id}")
                return CalendarResult(success=True, event_id=event_id)

            logger.error(f"Failed to create calendar event: {response.text}")
            return CalendarResult(
                success=False,
                error_code="create_failed",
                message=f"HTTP {response.status_code}",
            )

        except httpx.HTTPError as e:
            logger.error(f"Failed to create calendar event: {e}")
            return CalendarResult(
                success=False,
                error_code="connection_error",
                message="Unable to reach Google Calendar",
            )
        except ValueError as e:
            logger.error(f"Calendar create returned a non-JSON body: {e}")
            return CalendarResult(
                success=False,
                error_code="invalid_response",
                message="Unparseable response body",
            )

    async def update_event(
        self,
        event_id: str,
        summary: Optional[str] = None,
        description: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CalendarResult:
        """Patch the given fields of an event."""
        client = await self._get_client()

        payload: dict = {}
        if summary is not None:
            payload["summary"] = summary
        if description is not None:
            payload["description"] = description
        if start is not None:
            payload["start"] = {"dateTime": start.isoformat(), "timeZone": self.timezone}
        if end is not None:
            payload["end"] = {"dateTime": end.isoformat(), "timeZone": self.timezone}

        try:
            response = await client.patch(f"{self._events_path}/{event_id}", json=payload)

            if response.status_code == 200:
                return CalendarResult(success=True, event_id=event_id)
            return CalendarResult(
                success=False,
                event_id=event_id,
                error_code="update_failed",
                message=f"HTTP {response.status_code}",
            )

        except httpx.HTTPError as e:
            logger.error(f"Failed to update calendar event {event_id}: {e}")
            return CalendarResult(
                success=False,
                event_id=event_id,
                error_code="connection_error",
                message="Unable to reach Google Calendar",
            )

    async def cancel_event(self, event_id: str) -> CalendarResult:
        """Delete an event. A 410 (already gone) counts as success."""
        client = await self._get_client()

        try:
            response = await client.delete(f"{self._events_path}/{event_id}")

            if response.status_code in (200, 204, 410):
                return CalendarResult(success=True, event_id=event_id)
            return CalendarResult(
                success=False,
                event_id=event_id,
                error_code="cancellation_failed",
                message=f"HTTP {response.status_code}",
            )

        except httpx.HTTPError as e:
            logger.error(f"Failed to cancel calendar event {event_id}: {e}")
            return CalendarResult(
                success=False,
                event_id=event_id,
                error_code="connection_error",
                message="Unable to reach Google Calendar",
            )
