"""Appointment status lifecycle."""

from typing import Set

from app.models.database import AppointmentStatus


# Valid status transitions
VALID_TRANSITIONS: dict[AppointmentStatus, Set[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,  # Time-driven, outside the chat flow
    },
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.COMPLETED: set(),
}


def can_transition(from_status: AppointmentStatus, to_status: AppointmentStatus) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def get_valid_transitions(status: AppointmentStatus) -> Set[AppointmentStatus]:
    """Get all valid transitions from a status."""
    return VALID_TRANSITIONS.get(status, set())


def is_terminal_status(status: AppointmentStatus) -> bool:
    """Check if status is terminal (no further transitions)."""
    return not VALID_TRANSITIONS.get(status)


def is_active_status(status: AppointmentStatus) -> bool:
    """Active appointments block their time span."""
    return status in {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
    }
