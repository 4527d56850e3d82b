"""
FastAPI dependencies that assemble the scheduling components per request.

Every component is built over the request's database session; tests
override these with fakes through ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.scheduling.ledger import AppointmentLedger
from app.core.scheduling.notifications import AppointmentNotifier
from app.core.scheduling.orchestrator import (
    CalendarFactory,
    ConversationOrchestrator,
    MessengerFactory,
    calendar_for_user,
    messenger_for_user,
)
from app.infra.database import get_db
from app.infra.repositories import (
    AppointmentRepository,
    ConversationRepository,
    UserRepository,
)


async def get_user_repository(db: AsyncSession = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


async def get_ledger(db: AsyncSession = Depends(get_db)) -> AppointmentLedger:
    return AppointmentLedger(AppointmentRepository(db))


def get_calendar_factory() -> CalendarFactory:
    """How a user's calendar client is built."""
    return calendar_for_user


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    calendar_for: CalendarFactory = Depends(get_calendar_factory),
) -> ConversationOrchestrator:
    """Orchestrator wired to the request's session."""
    return ConversationOrchestrator(
        users=UserRepository(db),
        conversations=ConversationRepository(db),
        ledger=AppointmentLedger(AppointmentRepository(db)),
        calendar_for=calendar_for,
    )


def get_messenger_factory() -> MessengerFactory:
    """How a user's WhatsApp client is built."""
    return messenger_for_user


async def get_notifier(
    ledger: AppointmentLedger = Depends(get_ledger),
    messenger_for: MessengerFactory = Depends(get_messenger_factory),
) -> AppointmentNotifier:
    return AppointmentNotifier(ledger, messenger_for=messenger_for)
