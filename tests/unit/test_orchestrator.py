"""Tests for the conversation orchestrator."""

import pytest
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

from app.core.errors import (
    CalendarServiceError,
    MessagingServiceError,
    UserNotFoundError,
)
from app.core.intelligence.intent.types import Intent, IntentResult
from app.core.intelligence.slots.types import BookingFields
from app.core.scheduling.calendar_client import BusyInterval, CalendarResult
from app.core.scheduling.ledger import AppointmentLedger
from app.core.scheduling.orchestrator import ConversationOrchestrator
from app.core.scheduling.response import ResponseGenerator
from app.core.scheduling.router import IntentRouter
from app.infra.whatsapp import InboundMessage, SendResult
from app.models.database import AppointmentStatus
from tests.fakes import (
    FakeAppointmentRepository,
    FakeConversationRepository,
    FakeUserRepository,
    make_appointment,
    make_user,
)

SP = ZoneInfo("America/Sao_Paulo")
# Monday 2025-01-13, 09:00 in Sao Paulo
NOW = datetime(2025, 1, 13, 12, 0, tzinfo=timezone.utc)
CLIENT = "5511999999999"


@dataclass
class MockClaudeResponse:
    """Mock Claude response."""
    content: str
    model: str = "claude-3-5-sonnet-20241022"
    input_tokens: int = 100
    output_tokens: int = 50
    stop_reason: str = "end_turn"
    latency_ms: float = 50.0


@pytest.fixture
def user():
    return make_user()


@pytest.fixture
def appointments():
    return FakeAppointmentRepository()


@pytest.fixture
def conversations():
    return FakeConversationRepository()


@pytest.fixture
def classifier():
    mock = MagicMock()
    mock.classify = AsyncMock(return_value=IntentResult(intent=Intent.OTHER, confidence=0.0))
    return mock


@pytest.fixture
def extractor():
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=BookingFields())
    return mock


@pytest.fixture
def calendar():
    mock = MagicMock()
    mock.list_busy_intervals = AsyncMock(return_value=[])
    mock.create_event = AsyncMock(return_value=CalendarResult(success=True, event_id="evt-1"))
    mock.cancel_event = AsyncMock(return_value=CalendarResult(success=True, event_id="evt-1"))
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def messenger():
    mock = MagicMock()
    mock.send_text = AsyncMock(return_value=SendResult(message_id="wamid.out", recipient=CLIENT))
    mock.mark_read = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def claude():
    mock = AsyncMock()
    mock.chat.return_value = MockClaudeResponse(content="Olá! Como posso ajudar? 😊")
    return mock


@pytest.fixture
def orchestrator(user, appointments, conversations, classifier, extractor, calendar, messenger, claude):
    ledger = AppointmentLedger(appointments)
    return ConversationOrchestrator(
        users=FakeUserRepository(user),
        conversations=conversations,
        ledger=ledger,
        classifier=classifier,
        extractor=extractor,
        router=IntentRouter(ledger, confidence_threshold=0.7, reschedule_policy="hold"),
        calendar_for=lambda u: calendar,
        messenger_for=lambda u: messenger,
        response_for=lambda tz: ResponseGenerator(claude_client=claude, tz=tz),
        clock=lambda: NOW,
    )


def inbound(user, text, message_id="wamid.in"):
    return InboundMessage(
        sender=CLIENT,
        text=text,
        message_id=message_id,
        business_number=user.whatsapp_number,
    )


class TestBooking:
    """Booking a requested date and time."""

    @pytest.mark.asyncio
    async def test_book_tomorrow_at_two(
        self, orchestrator, user, classifier, extractor, calendar, messenger, appointments
    ):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))

        result = await orchestrator.handle_inbound(inbound(user, "Quero agendar amanhã às 14h"))

        assert result.appointment_created
        assert "terça-feira, 14 de janeiro" in result.response
        assert "14:00" in result.response

        (appointment,) = appointments.rows.values()
        assert appointment.start_at == datetime(2025, 1, 14, 14, 0, tzinfo=SP)
        assert appointment.end_at - appointment.start_at == timedelta(minutes=60)
        assert appointment.external_event_id == "evt-1"
        assert appointment.status == AppointmentStatus.CONFIRMED

        extractor.extract.assert_awaited_once_with("Quero agendar amanhã às 14h", today=date(2025, 1, 13))
        calendar.create_event.assert_awaited_once()
        assert calendar.create_event.call_args.kwargs["summary"] == "Atendimento - Cliente"
        messenger.send_text.assert_awaited_once_with(CLIENT, result.response)
        messenger.mark_read.assert_awaited_once_with("wamid.in")

    @pytest.mark.asyncio
    async def test_low_confidence_skips_extraction(self, orchestrator, user, classifier, extractor, appointments):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.65)

        result = await orchestrator.handle_inbound(inbound(user, "talvez marcar algo"))

        extractor.extract.assert_not_awaited()
        assert not result.appointment_created
        assert appointments.rows == {}

    @pytest.mark.asyncio
    async def test_calendar_refusal_becomes_apology(
        self, orchestrator, user, classifier, extractor, calendar, appointments
    ):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))
        calendar.create_event.return_value = CalendarResult(success=False, error_code="create_failed")

        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        assert not result.appointment_created
        assert result.response.startswith("Desculpe, não consegui confirmar esse horário")
        assert appointments.rows == {}

    @pytest.mark.asyncio
    async def test_calendar_unreachable_becomes_apology(
        self, orchestrator, user, classifier, extractor, calendar, messenger
    ):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))
        calendar.list_busy_intervals.side_effect = CalendarServiceError("timeout")

        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        assert not result.appointment_created
        calendar.create_event.assert_not_awaited()
        messenger.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ledger_conflict_asks_for_another_time(
        self, orchestrator, user, classifier, extractor, calendar, appointments
    ):
        taken = make_appointment(user.id, datetime(2025, 1, 14, 14, 0, tzinfo=SP), client_phone="5511777777777")
        appointments.rows[taken.id] = taken
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 30))

        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h30"))

        assert "já está ocupado" in result.response
        calendar.create_event.assert_not_awaited()
        assert len(appointments.rows) == 1

    @pytest.mark.asyncio
    async def test_busy_calendar_asks_for_another_time(
        self, orchestrator, user, classifier, extractor, calendar
    ):
        start = datetime(2025, 1, 14, 14, 0, tzinfo=SP)
        calendar.list_busy_intervals.return_value = [BusyInterval(start, start + timedelta(hours=1))]
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))

        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        assert "já está ocupado" in result.response
        calendar.create_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_race_removes_calendar_event(
        self, orchestrator, user, classifier, extractor, calendar, appointments
    ):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))

        # A concurrent booking lands between the check and the insert
        async def concurrent_booking(**kwargs):
            rival = make_appointment(user.id, kwargs["start"], client_phone="5511777777777")
            appointments.rows[rival.id] = rival
            return CalendarResult(success=True, event_id="evt-1")

        calendar.create_event.side_effect = concurrent_booking

        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        assert not result.appointment_created
        calendar.cancel_event.assert_awaited_once_with("evt-1")

    @pytest.mark.asyncio
    async def test_redelivery_after_failed_send_confirms_again(
        self, orchestrator, user, classifier, extractor, calendar, messenger, appointments
    ):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))
        messenger.send_text.side_effect = MessagingServiceError("HTTP 500")

        with pytest.raises(MessagingServiceError):
            await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        messenger.send_text.side_effect = None
        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        assert result.appointment_created
        assert "terça-feira, 14 de janeiro" in result.response
        assert "já está ocupado" not in result.response
        assert len(appointments.rows) == 1
        assert result.appointment_id == str(next(iter(appointments.rows)))
        calendar.create_event.assert_awaited_once()
        messenger.send_text.assert_awaited_with(CLIENT, result.response)

    @pytest.mark.asyncio
    async def test_same_span_by_another_client_is_taken(
        self, orchestrator, user, classifier, extractor, calendar, appointments
    ):
        taken = make_appointment(user.id, datetime(2025, 1, 14, 14, 0, tzinfo=SP), client_phone="5511777777777")
        appointments.rows[taken.id] = taken
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        extractor.extract.return_value = BookingFields(date=date(2025, 1, 14), time=time(14, 0))

        result = await orchestrator.handle_inbound(inbound(user, "amanhã 14h"))

        assert "já está ocupado" in result.response
        assert not result.appointment_created


class TestSlotOffers:
    """Booking without a time and rescheduling."""

    @pytest.mark.asyncio
    async def test_offers_three_slots(self, orchestrator, user, classifier, extractor):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)

        result = await orchestrator.handle_inbound(inbound(user, "Quero marcar um horário"))

        lines = result.response.split("\n")
        assert lines[0] == "Tenho esses horários disponíveis:"
        assert "1. segunda-feira, 13 de janeiro às 09:00" in lines
        assert "2. segunda-feira, 13 de janeiro às 10:00" in lines
        assert "3. segunda-feira, 13 de janeiro às 11:00" in lines
        assert not any(line.startswith("4.") for line in lines)

    @pytest.mark.asyncio
    async def test_no_slots(self, orchestrator, user, classifier, calendar):
        classifier.classify.return_value = IntentResult(intent=Intent.BOOK, confidence=0.9)
        calendar.list_busy_intervals.return_value = [BusyInterval(NOW, NOW + timedelta(days=30))]

        result = await orchestrator.handle_inbound(inbound(user, "Quero marcar"))

        assert result.response.startswith("No momento não tenho horários disponíveis")

    @pytest.mark.asyncio
    async def test_reschedule_keeps_original(self, orchestrator, user, classifier, calendar, appointments):
        original = make_appointment(user.id, NOW + timedelta(days=2), external_event_id="evt-9")
        appointments.rows[original.id] = original
        classifier.classify.return_value = IntentResult(intent=Intent.RESCHEDULE, confidence=0.9)

        result = await orchestrator.handle_inbound(inbound(user, "Preciso remarcar"))

        assert result.response.startswith("Sem problemas! Tenho esses horários disponíveis")
        assert original.status == AppointmentStatus.CONFIRMED
        calendar.cancel_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reschedule_without_appointment(self, orchestrator, user, classifier):
        classifier.classify.return_value = IntentResult(intent=Intent.RESCHEDULE, confidence=0.9)

        result = await orchestrator.handle_inbound(inbound(user, "Preciso remarcar"))

        assert result.response.endswith("Quer marcar um horário novo?")


class TestCancellation:
    """Cancelling the nearest appointment."""

    @pytest.mark.asyncio
    async def test_cancel_without_appointment(self, orchestrator, user, classifier, calendar, appointments):
        classifier.classify.return_value = IntentResult(intent=Intent.CANCEL, confidence=0.85)

        result = await orchestrator.handle_inbound(inbound(user, "Cancela meu horário"))

        assert result.response.startswith("Não encontrei nenhum agendamento ativo")
        assert appointments.writes == 0
        calendar.cancel_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_nearest(self, orchestrator, user, classifier, calendar, appointments):
        upcoming = make_appointment(user.id, NOW + timedelta(days=1), external_event_id="evt-7")
        appointments.rows[upcoming.id] = upcoming
        classifier.classify.return_value = IntentResult(intent=Intent.CANCEL, confidence=0.85)

        result = await orchestrator.handle_inbound(inbound(user, "Cancela meu horário"))

        assert upcoming.status == AppointmentStatus.CANCELLED
        assert result.response.startswith("Seu agendamento foi cancelado")
        calendar.cancel_event.assert_awaited_once_with("evt-7")

    @pytest.mark.asyncio
    async def test_calendar_delete_failure_still_cancels(self, orchestrator, user, classifier, calendar, appointments):
        upcoming = make_appointment(user.id, NOW + timedelta(days=1), external_event_id="evt-7")
        appointments.rows[upcoming.id] = upcoming
        calendar.cancel_event.return_value = CalendarResult(success=False, error_code="cancellation_failed")
        classifier.classify.return_value = IntentResult(intent=Intent.CANCEL, confidence=0.85)

        await orchestrator.handle_inbound(inbound(user, "Cancela"))

        assert upcoming.status == AppointmentStatus.CANCELLED


class TestConversation:
    """Conversational replies and the conversation log."""

    @pytest.mark.asyncio
    async def test_reply_from_model(self, orchestrator, user, claude, conversations):
        result = await orchestrator.handle_inbound(inbound(user, "Oi"))

        assert result.response == "Olá! Como posso ajudar? 😊"
        messages = claude.chat.call_args.kwargs["messages"]
        assert messages == [{"role": "user", "content": "Oi"}]
        assert "Dra. Ana" in claude.chat.call_args.kwargs["system_prompt"]

    @pytest.mark.asyncio
    async def test_history_passed_oldest_first(self, orchestrator, user, claude, conversations):
        await conversations.add(user.id, CLIENT, "Bom dia", is_from_client=True)
        await conversations.add(user.id, CLIENT, "Bom dia! Em que posso ajudar?", is_from_client=False, is_automated=True)

        await orchestrator.handle_inbound(inbound(user, "Quanto custa?"))

        messages = claude.chat.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "Quanto custa?"

    @pytest.mark.asyncio
    async def test_model_failure_sends_apology(self, orchestrator, user, claude, messenger):
        claude.chat.side_effect = Exception("overloaded")

        result = await orchestrator.handle_inbound(inbound(user, "Oi"))

        assert result.response.startswith("Desculpe, estou com dificuldades técnicas")
        messenger.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_turns_persisted(self, orchestrator, user, conversations):
        result = await orchestrator.handle_inbound(inbound(user, "Oi"))

        incoming, outgoing = conversations.turns
        assert incoming.is_from_client and not incoming.is_automated
        assert incoming.message == "Oi"
        assert not outgoing.is_from_client and outgoing.is_automated
        assert outgoing.message == result.response


class TestDelivery:
    """User resolution, sending and read receipts."""

    @pytest.mark.asyncio
    async def test_unknown_number_is_dropped(self, orchestrator, user, conversations, messenger):
        message = InboundMessage(sender=CLIENT, text="Oi", message_id="wamid.x", business_number="550000")

        with pytest.raises(UserNotFoundError):
            await orchestrator.handle_inbound(message)

        assert conversations.turns == []
        messenger.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_propagates(self, orchestrator, user, messenger, conversations):
        messenger.send_text.side_effect = MessagingServiceError("HTTP 500")

        with pytest.raises(MessagingServiceError):
            await orchestrator.handle_inbound(inbound(user, "Oi"))

        assert len(conversations.turns) == 2
        messenger.mark_read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mark_read_is_best_effort(self, orchestrator, user, messenger):
        messenger.mark_read.side_effect = RuntimeError("boom")

        result = await orchestrator.handle_inbound(inbound(user, "Oi"))

        assert result.delivered

    @pytest.mark.asyncio
    async def test_clients_are_closed(self, orchestrator, user, calendar, messenger):
        await orchestrator.handle_inbound(inbound(user, "Oi"))

        calendar.close.assert_awaited()
        messenger.close.assert_awaited()


class TestProcess:
    """Explicit-user entry point."""

    @pytest.mark.asyncio
    async def test_unknown_user(self, orchestrator):
        import uuid

        with pytest.raises(UserNotFoundError):
            await orchestrator.process(uuid.uuid4(), CLIENT, "Oi")

    @pytest.mark.asyncio
    async def test_sends_when_credentials_exist(self, orchestrator, user, messenger):
        result = await orchestrator.process(user.id, CLIENT, "Oi")

        assert result.delivered
        messenger.send_text.assert_awaited_once_with(CLIENT, result.response)
        messenger.mark_read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_credentials_no_send(self, user, appointments, conversations, classifier, claude, calendar):
        ledger = AppointmentLedger(appointments)
        orchestrator = ConversationOrchestrator(
            users=FakeUserRepository(user),
            conversations=conversations,
            ledger=ledger,
            classifier=classifier,
            extractor=MagicMock(),
            router=IntentRouter(ledger, confidence_threshold=0.7),
            calendar_for=lambda u: calendar,
            messenger_for=lambda u: None,
            response_for=lambda tz: ResponseGenerator(claude_client=claude, tz=tz),
            clock=lambda: NOW,
        )

        result = await orchestrator.process(user.id, CLIENT, "Oi")

        assert not result.delivered
        assert result.response
