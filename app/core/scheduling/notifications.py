"""
Outbound appointment notices.

Messages the business sends on its own initiative rather than in reply to
a client: the confirmation template and same-day reminders.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Callable

from app.config import settings
from app.core.errors import AppointmentNotFoundError, MessagingServiceError
from app.core.scheduling.formatting import format_date, format_time, get_locale_profile
from app.core.scheduling.ledger import AppointmentLedger
from app.core.scheduling.orchestrator import MessengerFactory, messenger_for_user, user_timezone
from app.infra.whatsapp import SendResult
from app.models.database import AppointmentStatus, User

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class ReminderRun:
    """Outcome of one reminder pass."""

    sent: list[str] = field(default_factory=list)      # appointment ids
    failed: list[str] = field(default_factory=list)


class AppointmentNotifier:
    """Sends confirmations and reminders from a user's business number."""

    def __init__(
        self,
        ledger: AppointmentLedger,
        messenger_for: MessengerFactory = messenger_for_user,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._ledger = ledger
        self._messenger_for = messenger_for
        self._clock = clock

    async def send_confirmation(self, user: User, appointment_id: uuid.UUID) -> SendResult:
        """Send the confirmation template for one of the user's appointments.

        Raises:
            AppointmentNotFoundError: unknown id, another user's appointment,
                or one that is not a confirmed client booking
            MessagingServiceError: no credentials, or the API refused the send
        """
        appointment = await self._ledger.get(appointment_id)
        if (
            appointment is None
            or appointment.user_id != user.id
            or not appointment.client_phone
            or appointment.status != AppointmentStatus.CONFIRMED
        ):
            raise AppointmentNotFoundError(str(appointment_id))

        messenger = self._messenger_for(user)
        if messenger is None:
            raise MessagingServiceError(f"User {user.id} has no WhatsApp credentials")

        tz = user_timezone(user)
        try:
            return await messenger.send_confirmation_template(
                appointment.client_phone,
                appointment.client_name,
                format_date(appointment.start_at, get_locale_profile(settings.reply_locale), tz),
                format_time(appointment.start_at, tz),
            )
        finally:
            await messenger.close()

    async def send_day_reminders(self, user: User) -> ReminderRun:
        """Remind every client with a booking later today, in the user's zone.

        A failed send is logged and counted; the pass carries on.

        Raises:
            MessagingServiceError: the user has no WhatsApp credentials
        """
        messenger = self._messenger_for(user)
        if messenger is None:
            raise MessagingServiceError(f"User {user.id} has no WhatsApp credentials")

        tz = user_timezone(user)
        now = self._clock()
        local_today = now.astimezone(tz).date()
        end_of_day = datetime.combine(local_today + timedelta(days=1), time.min, tzinfo=tz)

        run = ReminderRun()
        try:
            for appointment in await self._ledger.client_bookings_between(user.id, now, end_of_day):
                try:
                    await messenger.send_appointment_reminder(
                        appointment.client_phone,
                        appointment.client_name,
                        format_time(appointment.start_at, tz),
                    )
                    run.sent.append(str(appointment.id))
                except MessagingServiceError as e:
                    logger.warning(f"Reminder for appointment {appointment.id} not sent: {e}")
                    run.failed.append(str(appointment.id))
        finally:
            await messenger.close()

        logger.info(f"Reminders for user {user.id}: {len(run.sent)} sent, {len(run.failed)} failed")
        return run
