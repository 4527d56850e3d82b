"""Error taxonomy shared by the scheduling core and its adapters."""

from typing import Optional


class SchedulingError(Exception):
    """Base class for all scheduling errors."""
    pass


class NotFoundError(SchedulingError):
    """Raised when a user or appointment does not exist."""
    pass


class UserNotFoundError(NotFoundError):
    """No account owns the given identifier."""

    def __init__(self, identifier: str):
        super().__init__(f"No user found for {identifier}")
        self.identifier = identifier


class AppointmentNotFoundError(NotFoundError):
    """No appointment exists with the given id."""

    def __init__(self, appointment_id: str):
        super().__init__(f"Appointment {appointment_id} not found")
        self.appointment_id = appointment_id


class ConflictError(SchedulingError):
    """Raised when a booking would overlap an active appointment."""

    def __init__(self, message: str = "Requested time overlaps an existing appointment",
                 conflicting_id: Optional[str] = None):
        super().__init__(message)
        self.conflicting_id = conflicting_id


class InvalidTransitionError(SchedulingError):
    """Raised on a status change the appointment lifecycle forbids."""
    pass


class ExternalServiceError(SchedulingError):
    """Raised when an external collaborator fails."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class CalendarServiceError(ExternalServiceError):
    """Google Calendar call failed."""

    def __init__(self, message: str):
        super().__init__("calendar", message)


class MessagingServiceError(ExternalServiceError):
    """WhatsApp call failed."""

    def __init__(self, message: str):
        super().__init__("messaging", message)
