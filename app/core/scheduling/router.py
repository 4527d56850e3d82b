"""
Intent Router.

Turns a classified intent plus extracted booking fields into a single
action for the orchestrator to execute. Deterministic: the only lookup
is the client's nearest active appointment.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Optional, Union

from app.config import settings
from app.core.intelligence.intent.types import Intent, IntentResult
from app.core.intelligence.slots.types import BookingFields
from app.core.scheduling.ledger import AppointmentLedger
from app.models.database import Appointment

logger = logging.getLogger(__name__)


@dataclass
class CreateAppointment:
    """Book the requested span."""

    start: datetime
    end: datetime
    client_name: Optional[str] = None


@dataclass
class ProposeSlots:
    """Offer free slots from the availability engine."""

    limit: int = 3
    days_ahead: int = 7
    reschedule_of: Optional[Appointment] = None
    cancel_first: bool = False  # Cancel reschedule_of before offering

    @property
    def is_reschedule(self) -> bool:
        return self.reschedule_of is not None


@dataclass
class CancelAppointment:
    appointment: Appointment


@dataclass
class NoActiveAppointment:
    """Cancel or reschedule asked for, nothing to act on."""

    for_reschedule: bool = False


@dataclass
class ConversationalReply:
    """Hand the message to the reply model."""


Action = Union[
    CreateAppointment,
    ProposeSlots,
    CancelAppointment,
    NoActiveAppointment,
    ConversationalReply,
]


class IntentRouter:
    """
    Decision policy, in priority order:

    1. book: date and time known -> CreateAppointment, else ProposeSlots
    2. cancel: nearest active appointment -> CancelAppointment
    3. reschedule: nearest active appointment -> ProposeSlots
    4. anything else -> ConversationalReply

    Each category must clear the confidence threshold strictly; anything
    that does not falls through to the conversational reply.
    """

    def __init__(
        self,
        ledger: AppointmentLedger,
        confidence_threshold: Optional[float] = None,
        reschedule_policy: Optional[str] = None,
        slot_limit: Optional[int] = None,
        days_ahead: Optional[int] = None,
    ):
        self._ledger = ledger
        self.confidence_threshold = (
            settings.intent_confidence_threshold
            if confidence_threshold is None
            else confidence_threshold
        )
        self.reschedule_policy = reschedule_policy or settings.reschedule_policy
        self.slot_limit = slot_limit or settings.slot_suggestion_limit
        self.days_ahead = days_ahead or settings.slot_lookahead_days

    async def route(
        self,
        intent: IntentResult,
        extracted: Optional[BookingFields],
        *,
        user_id: uuid.UUID,
        client_phone: str,
        duration_minutes: int,
        tz: tzinfo,
        now: datetime,
    ) -> Action:
        """Pick the action for one inbound message.

        Args:
            intent: Classified intent
            extracted: Booking fields (only consulted for book)
            user_id: Owning user
            client_phone: Client channel identifier
            duration_minutes: Appointment length for new bookings
            tz: Zone the extracted date/time are expressed in
            now: Reference instant for the active-appointment lookup

        Returns:
            One of the action dataclasses
        """
        confident = intent.clears(self.confidence_threshold)
        extracted = extracted or BookingFields()

        if intent.intent == Intent.BOOK and confident:
            if extracted.has_datetime:
                start = extracted.start_at(tz)
                action = CreateAppointment(
                    start=start,
                    end=start + timedelta(minutes=duration_minutes),
                    client_name=extracted.client_name,
                )
            else:
                action = ProposeSlots(limit=self.slot_limit, days_ahead=self.days_ahead)

        elif intent.intent == Intent.CANCEL and confident:
            appointment = await self._ledger.find_nearest_active(user_id, client_phone, now)
            action = (
                CancelAppointment(appointment=appointment)
                if appointment
                else NoActiveAppointment()
            )

        elif intent.intent == Intent.RESCHEDULE and confident:
            appointment = await self._ledger.find_nearest_active(user_id, client_phone, now)
            if appointment is None:
                action = NoActiveAppointment(for_reschedule=True)
            else:
                action = ProposeSlots(
                    limit=self.slot_limit,
                    days_ahead=self.days_ahead,
                    reschedule_of=appointment,
                    cancel_first=self.reschedule_policy == "cancel_then_propose",
                )

        else:
            action = ConversationalReply()

        logger.info(
            f"Routed {intent.intent.value} ({intent.confidence:.2f}) "
            f"to {type(action).__name__}"
        )
        return action
