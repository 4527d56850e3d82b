"""
Repositories

Thin async query layer over the ORM models. Each write commits on its own;
there is no transaction spanning several operations.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError
from app.models.database import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    ConversationTurn,
    User,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATEs raised by the appointment constraints
EXCLUSION_VIOLATION = "23P01"
UNIQUE_VIOLATION = "23505"


def _sqlstate(error: IntegrityError) -> Optional[str]:
    """Dig the SQLSTATE out of a driver error."""
    orig = getattr(error, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class UserRepository:
    """Lookups for the owning accounts."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        return await self._session.get(User, user_id)

    async def get_by_whatsapp(self, phone: str) -> Optional[User]:
        """Resolve the account registered under a WhatsApp number."""
        result = await self._session.execute(
            select(User).where(User.whatsapp_number == phone).limit(1)
        )
        return result.scalars().first()


class AppointmentRepository:
    """Filtered reads and per-row writes on the appointment ledger."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, appointment_id: uuid.UUID) -> Optional[Appointment]:
        return await self._session.get(Appointment, appointment_id)

    async def find_overlapping(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> Sequence[Appointment]:
        """Active appointments whose [start, end) intersects the given span."""
        result = await self._session.execute(
            select(Appointment)
            .where(
                Appointment.user_id == user_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_at < end,
                Appointment.end_at > start,
            )
            .order_by(Appointment.start_at)
        )
        return result.scalars().all()

    async def find_nearest_active(
        self,
        user_id: uuid.UUID,
        client_phone: str,
        now: datetime,
    ) -> Optional[Appointment]:
        result = await self._session.execute(
            select(Appointment)
            .where(
                Appointment.user_id == user_id,
                Appointment.client_phone == client_phone,
                Appointment.status == AppointmentStatus.CONFIRMED,
                Appointment.start_at >= now,
            )
            .order_by(Appointment.start_at.asc())
            .limit(1)
        )
        return result.scalars().first()

    async def find_client_bookings_between(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> Sequence[Appointment]:
        """Confirmed appointments with a client number starting in [start, end)."""
        result = await self._session.execute(
            select(Appointment)
            .where(
                Appointment.user_id == user_id,
                Appointment.status == AppointmentStatus.CONFIRMED,
                Appointment.client_phone != "",
                Appointment.start_at >= start,
                Appointment.start_at < end,
            )
            .order_by(Appointment.start_at)
        )
        return result.scalars().all()

    async def get_by_external_id(
        self,
        user_id: uuid.UUID,
        external_event_id: str,
    ) -> Optional[Appointment]:
        result = await self._session.execute(
            select(Appointment)
            .where(
                Appointment.user_id == user_id,
                Appointment.external_event_id == external_event_id,
            )
            .limit(1)
        )
        return result.scalars().first()

    async def add(self, appointment: Appointment) -> Appointment:
        """Insert an appointment.

        The insert runs in a SAVEPOINT so a rejected row is rolled back alone;
        everything else loaded in the session stays usable.

        Raises:
            ConflictError: the storage-level overlap or external-reference
                constraint rejected the row
        """
        try:
            async with self._session.begin_nested():
                self._session.add(appointment)
        except IntegrityError as e:
            state = _sqlstate(e)
            if state == EXCLUSION_VIOLATION:
                logger.warning(f"Overlap rejected by storage for user {appointment.user_id}")
                raise ConflictError() from e
            if state == UNIQUE_VIOLATION:
                raise ConflictError(
                    f"External event {appointment.external_event_id} already recorded"
                ) from e
            raise
        await self._session.commit()
        return appointment

    async def save(self, appointment: Appointment) -> Appointment:
        """Persist changes made to a loaded appointment."""
        self._session.add(appointment)
        await self._session.commit()
        return appointment


class ConversationRepository:
    """Append-only conversation log."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(
        self,
        user_id: uuid.UUID,
        client_phone: str,
        message: str,
        is_from_client: bool,
        is_automated: bool = False,
    ) -> ConversationTurn:
        turn = ConversationTurn(
            id=uuid.uuid4(),
            user_id=user_id,
            client_phone=client_phone,
            message=message,
            is_from_client=is_from_client,
            is_automated=is_automated,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(turn)
        await self._session.commit()
        return turn

    async def recent(
        self,
        user_id: uuid.UUID,
        client_phone: str,
        limit: int = 20,
    ) -> list[ConversationTurn]:
        """Most recent ``limit`` turns, returned oldest-first."""
        result = await self._session.execute(
            select(ConversationTurn)
            .where(
                ConversationTurn.user_id == user_id,
                ConversationTurn.client_phone == client_phone,
            )
            .order_by(ConversationTurn.created_at.desc())
            .limit(limit)
        )
        turns = list(result.scalars().all())
        turns.reverse()
        return turns
