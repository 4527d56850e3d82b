"""
Database Models

SQLAlchemy ORM models for the WhatsApp scheduling service: the owning
professional (User), their appointment ledger and the conversation log.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, String, Text,
    Enum as SQLEnum, func, text
)
from sqlalchemy.dialects.postgresql import UUID, ExcludeConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False
    )


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class User(Base, TimestampMixin):
    """
    User model (the professional whose agenda is automated).

    Holds the per-account credentials for WhatsApp and Google Calendar and
    the business-hours configuration used to compute availability.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_user_whatsapp", "whatsapp_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    whatsapp_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    whatsapp_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    whatsapp_phone_number_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    google_calendar_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_calendar_id: Mapped[str] = mapped_column(String(255), default="primary")
    business_hours_start: Mapped[str] = mapped_column(String(5), default="09:00")
    business_hours_end: Mapped[str] = mapped_column(String(5), default="18:00")
    appointment_duration: Mapped[int] = mapped_column(Integer, default=60)
    timezone: Mapped[str] = mapped_column(String(50), default="America/Sao_Paulo")
    tone_of_voice: Mapped[str] = mapped_column(String(255), default="amigável e profissional")

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="user"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}')>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    The authoritative local ledger entry. Cancellation is a status change;
    rows are never deleted.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_client", "user_id", "client_phone", "status", "start_at"),
        Index(
            "uq_appointment_external_event",
            "user_id",
            "external_event_id",
            unique=True,
            postgresql_where=text("external_event_id IS NOT NULL"),
        ),
        ExcludeConstraint(
            ("user_id", "="),
            (func.tstzrange(text("start_at"), text("end_at")), "&&"),
            name="ex_appointment_no_overlap",
            using="gist",
            where=text("status IN ('SCHEDULED', 'CONFIRMED')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    client_phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(AppointmentStatus),
        default=AppointmentStatus.CONFIRMED,
        nullable=False
    )
    external_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    user: Mapped["User"] = relationship("User", back_populates="appointments")

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, user_id={self.user_id}, "
            f"start={self.start_at}, status={self.status.value})>"
        )


class ConversationTurn(Base):
    """
    One WhatsApp message exchanged with a client.

    Immutable once written; read back as bounded history windows.
    """

    __tablename__ = "conversation_turns"
    __table_args__ = (
        Index("idx_turn_client_time", "user_id", "client_phone", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    client_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_from_client: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_automated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )

    @property
    def role(self) -> str:
        """Role vocabulary expected by the reply generator."""
        return "user" if self.is_from_client else "assistant"

    def __repr__(self) -> str:
        direction = "in" if self.is_from_client else "out"
        return f"<ConversationTurn(id={self.id}, client='{self.client_phone}', {direction})>"
