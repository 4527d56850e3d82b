"""
Conversation Orchestrator - Main Orchestrator.

Runs one inbound WhatsApp message through the whole cycle:

1. Resolve the owning user
2. Persist the inbound turn
3. Load recent history
4. Classify intent (and extract booking fields for bookings)
5. Route and execute the action against ledger and calendar
6. Compose the reply
7. Persist the outbound turn
8. Send the reply (failures propagate)
9. Mark the inbound message read (best effort)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings
from app.core.errors import (
    AppointmentNotFoundError,
    CalendarServiceError,
    ConflictError,
    MessagingServiceError,
    UserNotFoundError,
)
from app.core.intelligence.intent.classifier import IntentClassifier
from app.core.intelligence.intent.types import Intent
from app.core.intelligence.slots.extractor import BookingExtractor
from app.core.intelligence.slots.types import BookingFields
from app.core.scheduling.availability import AvailabilityEngine, AvailabilityWindow
from app.core.scheduling.calendar_client import GoogleCalendarClient
from app.core.scheduling.formatting import get_locale_profile
from app.core.scheduling.ledger import AppointmentLedger
from app.core.scheduling.response import BusinessContext, ResponseGenerator
from app.core.scheduling.router import (
    Action,
    CancelAppointment,
    ConversationalReply,
    CreateAppointment,
    IntentRouter,
    NoActiveAppointment,
    ProposeSlots,
)
from app.infra.repositories import ConversationRepository, UserRepository
from app.infra.whatsapp import InboundMessage, WhatsAppClient
from app.models.database import Appointment, User

logger = logging.getLogger(__name__)

CalendarFactory = Callable[[User], Optional[GoogleCalendarClient]]
MessengerFactory = Callable[[User], Optional[WhatsAppClient]]
ResponseFactory = Callable[[tzinfo], ResponseGenerator]

# Slots shown to the reply model as context
CONTEXT_SLOT_LIMIT = 5


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def calendar_for_user(user: User) -> Optional[GoogleCalendarClient]:
    """Calendar client for a user, or None when no calendar is connected."""
    if not user.google_calendar_token:
        return None
    return GoogleCalendarClient(
        access_token=user.google_calendar_token,
        calendar_id=user.google_calendar_id,
        timezone=user.timezone,
    )


def messenger_for_user(user: User) -> Optional[WhatsAppClient]:
    """WhatsApp client for a user, or None without credentials."""
    if not user.whatsapp_token or not user.whatsapp_phone_number_id:
        return None
    return WhatsAppClient(
        access_token=user.whatsapp_token,
        phone_number_id=user.whatsapp_phone_number_id,
    )


def user_timezone(user: User) -> tzinfo:
    """The user's zone, falling back to the configured default."""
    try:
        return ZoneInfo(user.timezone or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {user.timezone!r} for user {user.id}")
        return ZoneInfo(settings.default_timezone)


def default_response_factory(tz: tzinfo) -> ResponseGenerator:
    return ResponseGenerator(profile=get_locale_profile(settings.reply_locale), tz=tz)


@dataclass
class OrchestratorResult:
    """Outcome of one conversation cycle."""

    status: str  # success
    response: str
    intent: Optional[Intent] = None
    confidence: Optional[float] = None
    action: Optional[str] = None
    appointment_created: bool = False
    appointment_id: Optional[str] = None
    delivered: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "status": self.status,
            "intent": self.intent.value if self.intent else None,
            "appointment_created": self.appointment_created,
            "response": self.response,
            "delivered": self.delivered,
        }
        if self.appointment_id:
            result["appointment_id"] = self.appointment_id
        return result


@dataclass
class _Outcome:
    reply: str
    appointment: Optional[Appointment] = None


class ConversationOrchestrator:
    """
    Coordinates:
    - Conversation log
    - Intent classification and booking-field extraction
    - Intent routing
    - Availability search, ledger and calendar mutations
    - Reply composition and delivery
    """

    def __init__(
        self,
        users: UserRepository,
        conversations: ConversationRepository,
        ledger: AppointmentLedger,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[BookingExtractor] = None,
        router: Optional[IntentRouter] = None,
        calendar_for: CalendarFactory = calendar_for_user,
        messenger_for: MessengerFactory = messenger_for_user,
        response_for: ResponseFactory = default_response_factory,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize orchestrator with optional dependencies.

        Args:
            users: User lookups
            conversations: Conversation log
            ledger: Appointment ledger
            classifier: Intent classifier
            extractor: Booking-field extractor
            router: Intent router (built over ``ledger`` if omitted)
            calendar_for: Builds a calendar client for a user
            messenger_for: Builds a WhatsApp client for a user
            response_for: Builds a reply generator for a timezone
            clock: Current instant
        """
        self._users = users
        self._conversations = conversations
        self._ledger = ledger
        self._classifier = classifier or IntentClassifier()
        self._extractor = extractor or BookingExtractor()
        self._router = router or IntentRouter(ledger)
        self._calendar_for = calendar_for
        self._messenger_for = messenger_for
        self._response_for = response_for
        self._clock = clock

    async def handle_inbound(self, message: InboundMessage) -> OrchestratorResult:
        """Full cycle for a webhook message.

        Raises:
            UserNotFoundError: no account owns the receiving number
            MessagingServiceError: the reply could not be delivered
        """
        user = await self._users.get_by_whatsapp(message.owner_identifier)
        if user is None:
            logger.info(f"No user registered for {message.owner_identifier}")
            raise UserNotFoundError(message.owner_identifier)

        messenger = self._messenger_for(user)
        try:
            result = await self._run_cycle(user, message.sender, message.text)

            if messenger is None:
                raise MessagingServiceError(f"User {user.id} has no WhatsApp credentials")
            await messenger.send_text(message.sender, result.response)
            result.delivered = True

            try:
                await messenger.mark_read(message.message_id)
            except Exception as e:
                logger.warning(f"Could not mark {message.message_id} read: {e}")
            return result
        finally:
            if messenger is not None:
                await messenger.close()

    async def process(self, user_id: uuid.UUID, client_phone: str, text: str) -> OrchestratorResult:
        """Cycle for an explicitly chosen user.

        The reply is sent only when the user has WhatsApp credentials.

        Raises:
            UserNotFoundError: unknown user id
            MessagingServiceError: the reply could not be delivered
        """
        user = await self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))

        result = await self._run_cycle(user, client_phone, text)

        messenger = self._messenger_for(user)
        if messenger is not None:
            try:
                await messenger.send_text(client_phone, result.response)
                result.delivered = True
            finally:
                await messenger.close()

        return result

    async def _run_cycle(self, user: User, client_phone: str, text: str) -> OrchestratorResult:
        """Steps 2 to 7: everything up to delivery."""
        now = self._clock()
        tz = user_timezone(user)
        responder = self._response_for(tz)

        await self._conversations.add(
            user_id=user.id,
            client_phone=client_phone,
            message=text,
            is_from_client=True,
        )

        turns = await self._conversations.recent(user.id, client_phone, limit=settings.history_window)
        history = [{"role": turn.role, "content": turn.message} for turn in turns]

        intent = await self._classifier.classify(text)
        logger.info(f"Intent for {client_phone}: {intent.intent.value} ({intent.confidence:.2f})")

        extracted: Optional[BookingFields] = None
        if intent.intent == Intent.BOOK and intent.clears(self._router.confidence_threshold):
            extracted = await self._extractor.extract(text, today=now.astimezone(tz).date())

        action = await self._router.route(
            intent,
            extracted,
            user_id=user.id,
            client_phone=client_phone,
            duration_minutes=user.appointment_duration,
            tz=tz,
            now=now,
        )

        calendar = self._calendar_for(user)
        try:
            outcome = await self._execute(
                action,
                user=user,
                client_phone=client_phone,
                text=text,
                history=history,
                responder=responder,
                calendar=calendar,
                now=now,
            )
        finally:
            if calendar is not None:
                await calendar.close()

        await self._conversations.add(
            user_id=user.id,
            client_phone=client_phone,
            message=outcome.reply,
            is_from_client=False,
            is_automated=True,
        )

        return OrchestratorResult(
            status="success",
            response=outcome.reply,
            intent=intent.intent,
            confidence=intent.confidence,
            action=type(action).__name__,
            appointment_created=outcome.appointment is not None,
            appointment_id=str(outcome.appointment.id) if outcome.appointment else None,
        )

    async def _execute(
        self,
        action: Action,
        *,
        user: User,
        client_phone: str,
        text: str,
        history: list[dict],
        responder: ResponseGenerator,
        calendar: Optional[GoogleCalendarClient],
        now: datetime,
    ) -> _Outcome:
        """Carry out a routed action and compose its reply."""
        if isinstance(action, CreateAppointment):
            return await self._create_appointment(action, user, client_phone, responder, calendar)

        if isinstance(action, ProposeSlots):
            return await self._propose_slots(action, user, responder, calendar, now)

        if isinstance(action, CancelAppointment):
            try:
                await self._cancel(action.appointment, calendar)
            except AppointmentNotFoundError:
                return _Outcome(reply=responder.no_active_appointment())
            return _Outcome(reply=responder.cancelled())

        if isinstance(action, NoActiveAppointment):
            return _Outcome(reply=responder.no_active_appointment(reschedule=action.for_reschedule))

        if isinstance(action, ConversationalReply):
            slots = await self._context_slots(user, calendar, now)
            system_context = responder.build_system_context(
                BusinessContext(
                    name=user.name,
                    tone_of_voice=user.tone_of_voice,
                    business_hours_start=user.business_hours_start,
                    business_hours_end=user.business_hours_end,
                    appointment_duration=user.appointment_duration,
                    available_slots=slots,
                )
            )
            reply = await responder.generate_reply(system_context, history, text)
            return _Outcome(reply=reply)

        raise TypeError(f"Unhandled action {action!r}")

    async def _create_appointment(
        self,
        action: CreateAppointment,
        user: User,
        client_phone: str,
        responder: ResponseGenerator,
        calendar: Optional[GoogleCalendarClient],
    ) -> _Outcome:
        """Check the ledger, create the calendar event, then record it."""
        if calendar is None:
            logger.warning(f"User {user.id} has no calendar connected; cannot book")
            return _Outcome(reply=responder.booking_failed())

        client_name = action.client_name or "Cliente"

        # Redelivered message whose booking already went through
        existing = await self._ledger.find_booking(user.id, client_phone, action.start, action.end)
        if existing is not None:
            logger.info(f"Appointment {existing.id} already booked for {client_phone}; confirming again")
            return _Outcome(reply=responder.booking_confirmed(action.start), appointment=existing)

        try:
            await self._ledger.ensure_available(user.id, action.start, action.end)
            busy = await calendar.list_busy_intervals(action.start, action.end)
        except ConflictError:
            return _Outcome(reply=responder.slot_taken())
        except CalendarServiceError as e:
            logger.error(f"Calendar check failed for user {user.id}: {e}")
            return _Outcome(reply=responder.booking_failed())

        if busy:
            return _Outcome(reply=responder.slot_taken())

        event = await calendar.create_event(
            summary=f"Atendimento - {client_name}",
            description=f"Cliente: {client_phone}\nAgendado via WhatsApp",
            start=action.start,
            end=action.end,
        )
        if not event.success:
            logger.error(f"Calendar refused booking for user {user.id}: {event.message}")
            return _Outcome(reply=responder.booking_failed())

        try:
            appointment = await self._ledger.create(
                user_id=user.id,
                client_phone=client_phone,
                client_name=client_name,
                start=action.start,
                end=action.end,
                external_event_id=event.event_id,
            )
        except ConflictError:
            # Lost the race to a concurrent booking; undo the calendar side
            if event.event_id:
                await calendar.cancel_event(event.event_id)
            return _Outcome(reply=responder.slot_taken())

        return _Outcome(reply=responder.booking_confirmed(action.start), appointment=appointment)

    async def _propose_slots(
        self,
        action: ProposeSlots,
        user: User,
        responder: ResponseGenerator,
        calendar: Optional[GoogleCalendarClient],
        now: datetime,
    ) -> _Outcome:
        if action.cancel_first and action.reschedule_of is not None:
            await self._cancel(action.reschedule_of, calendar)

        if calendar is None:
            logger.warning(f"User {user.id} has no calendar connected; no slots to offer")
            return _Outcome(reply=responder.unavailable())

        try:
            slots = await self._find_slots(user, calendar, now, action.limit, action.days_ahead)
        except CalendarServiceError as e:
            logger.error(f"Availability lookup failed for user {user.id}: {e}")
            return _Outcome(reply=responder.unavailable())

        return _Outcome(
            reply=responder.format_slots(slots, reschedule=action.is_reschedule, limit=action.limit)
        )

    async def _find_slots(
        self,
        user: User,
        calendar: GoogleCalendarClient,
        now: datetime,
        limit: int,
        days_ahead: int,
    ) -> list[datetime]:
        window = AvailabilityWindow.from_strings(
            user.business_hours_start,
            user.business_hours_end,
            user.appointment_duration,
            days_ahead=days_ahead,
        )
        engine = AvailabilityEngine(calendar.list_busy_intervals)
        return await engine.find_available_slots(
            window,
            now=now,
            tz=user_timezone(user),
            limit=limit,
            earliest=now,
        )

    async def _context_slots(
        self,
        user: User,
        calendar: Optional[GoogleCalendarClient],
        now: datetime,
    ) -> list[datetime]:
        """Free slots for the reply prompt; empty when the calendar is unavailable."""
        if calendar is None:
            return []
        try:
            return await self._find_slots(
                user, calendar, now, CONTEXT_SLOT_LIMIT, settings.slot_lookahead_days
            )
        except CalendarServiceError as e:
            logger.warning(f"Skipping slots in reply context: {e}")
            return []

    async def _cancel(
        self,
        appointment: Appointment,
        calendar: Optional[GoogleCalendarClient],
    ) -> None:
        """Cancel in the ledger, then remove the calendar event if any."""
        await self._ledger.cancel(appointment.id)

        if appointment.external_event_id and calendar is not None:
            result = await calendar.cancel_event(appointment.external_event_id)
            if not result.success:
                logger.warning(
                    f"Calendar event {appointment.external_event_id} not removed: {result.message}"
                )
