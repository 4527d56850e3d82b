"""
Appointment Ledger.

The authoritative local record of appointments. Guards the no-overlap
invariant and the status lifecycle; never deletes rows.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from app.core.errors import (
    AppointmentNotFoundError,
    ConflictError,
    InvalidTransitionError,
)
from app.core.scheduling.calendar_client import CalendarEvent
from app.core.scheduling.status import can_transition
from app.infra.repositories import AppointmentRepository
from app.models.database import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class AppointmentLedger:
    """
    Application-level rules over the appointment repository.

    The overlap check here is a read-then-write; the storage exclusion
    constraint closes the race between concurrent bookings, and the
    repository maps its violation to ConflictError as well.
    """

    def __init__(self, repository: AppointmentRepository):
        self._repo = repository

    async def ensure_available(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> None:
        """Raise ConflictError if [start, end) overlaps an active appointment."""
        overlapping = await self._repo.find_overlapping(user_id, start, end)
        if overlapping:
            clash = overlapping[0]
            logger.info(
                f"Booking {start.isoformat()} for user {user_id} clashes with {clash.id}"
            )
            raise ConflictError(conflicting_id=str(clash.id))

    async def find_booking(
        self,
        user_id: uuid.UUID,
        client_phone: str,
        start: datetime,
        end: datetime,
    ) -> Optional[Appointment]:
        """The client's own active appointment at exactly [start, end), if any."""
        for appointment in await self._repo.find_overlapping(user_id, start, end):
            if (
                appointment.client_phone == client_phone
                and appointment.start_at == start
                and appointment.end_at == end
            ):
                return appointment
        return None

    async def create(
        self,
        user_id: uuid.UUID,
        client_phone: str,
        client_name: str,
        start: datetime,
        end: datetime,
        external_event_id: Optional[str] = None,
    ) -> Appointment:
        """Record a confirmed appointment.

        Raises:
            ConflictError: the span overlaps an active appointment
        """
        if end <= start:
            raise ValueError("Appointment must end after it starts")

        await self.ensure_available(user_id, start, end)

        appointment = Appointment(
            id=uuid.uuid4(),
            user_id=user_id,
            client_phone=client_phone,
            client_name=client_name,
            start_at=start,
            end_at=end,
            status=AppointmentStatus.CONFIRMED,
            external_event_id=external_event_id,
        )
        appointment = await self._repo.add(appointment)
        logger.info(f"Appointment {appointment.id} confirmed for user {user_id} at {start.isoformat()}")
        return appointment

    async def cancel(self, appointment_id: uuid.UUID) -> Appointment:
        """Move an appointment to cancelled. Re-cancelling is a no-op.

        Raises:
            AppointmentNotFoundError: unknown id
            InvalidTransitionError: the appointment is already completed
        """
        appointment = await self._get_or_raise(appointment_id)

        if appointment.status == AppointmentStatus.CANCELLED:
            logger.debug(f"Appointment {appointment_id} already cancelled")
            return appointment

        self._check_transition(appointment, AppointmentStatus.CANCELLED)
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_at = _utcnow()
        await self._repo.save(appointment)

        logger.info(f"Appointment {appointment_id} cancelled")
        return appointment

    async def complete(self, appointment_id: uuid.UUID) -> Appointment:
        """Mark a confirmed appointment as completed."""
        appointment = await self._get_or_raise(appointment_id)
        self._check_transition(appointment, AppointmentStatus.COMPLETED)

        appointment.status = AppointmentStatus.COMPLETED
        appointment.completed_at = _utcnow()
        await self._repo.save(appointment)
        return appointment

    async def get(self, appointment_id: uuid.UUID) -> Optional[Appointment]:
        return await self._repo.get(appointment_id)

    async def find_nearest_active(
        self,
        user_id: uuid.UUID,
        client_phone: str,
        now: datetime,
    ) -> Optional[Appointment]:
        """Earliest confirmed appointment starting at or after ``now``."""
        return await self._repo.find_nearest_active(user_id, client_phone, now)

    async def client_bookings_between(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[Appointment]:
        """Confirmed appointments booked by a client, starting in [start, end)."""
        return list(await self._repo.find_client_bookings_between(user_id, start, end))

    async def sync_from_external_calendar(
        self,
        user_id: uuid.UUID,
        external_events: Iterable[CalendarEvent],
    ) -> int:
        """Insert calendar events the ledger does not know yet.

        Insert-only and per event: a failure leaves earlier events synced.
        Matching on the external reference makes re-runs safe.

        Returns:
            Number of appointments inserted
        """
        inserted = 0

        for event in external_events:
            if event.start is None or event.end is None or event.end <= event.start:
                continue  # All-day or malformed

            existing = await self._repo.get_by_external_id(user_id, event.event_id)
            if existing is not None:
                continue

            try:
                await self.create(
                    user_id=user_id,
                    client_phone="",
                    client_name=event.summary or "Sem título",
                    start=event.start,
                    end=event.end,
                    external_event_id=event.event_id,
                )
                inserted += 1
            except ConflictError as e:
                logger.warning(f"Skipping calendar event {event.event_id}: {e}")

        logger.info(f"Calendar sync for user {user_id}: {inserted} inserted")
        return inserted

    async def _get_or_raise(self, appointment_id: uuid.UUID) -> Appointment:
        appointment = await self._repo.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(str(appointment_id))
        return appointment

    def _check_transition(self, appointment: Appointment, target: AppointmentStatus) -> None:
        if not can_transition(appointment.status, target):
            raise InvalidTransitionError(
                f"Cannot move appointment {appointment.id} "
                f"from {appointment.status.value} to {target.value}"
            )
