"""
Scheduling Module

Availability search, intent routing, the appointment ledger, Google
Calendar integration, reply composition and the conversation orchestrator.

Usage:
    from app.core.scheduling import ConversationOrchestrator, AppointmentLedger

    orchestrator = ConversationOrchestrator(
        users=UserRepository(db),
        conversations=ConversationRepository(db),
        ledger=AppointmentLedger(AppointmentRepository(db)),
    )
    result = await orchestrator.handle_inbound(message)
    print(result.response)  # Reply sent to the client
"""

# Calendar Client
from app.core.scheduling.calendar_client import (
    GoogleCalendarClient,
    CalendarEvent,
    CalendarResult,
    BusyInterval,
)

# Availability
from app.core.scheduling.availability import (
    AvailabilityEngine,
    AvailabilityWindow,
    find_available_slots,
)

# Ledger
from app.core.scheduling.ledger import AppointmentLedger
from app.core.scheduling.status import (
    can_transition,
    get_valid_transitions,
    is_terminal_status,
)

# Routing
from app.core.scheduling.router import (
    IntentRouter,
    Action,
    CreateAppointment,
    ProposeSlots,
    CancelAppointment,
    NoActiveAppointment,
    ConversationalReply,
)

# Replies
from app.core.scheduling.formatting import (
    LocaleProfile,
    PT_BR,
    EN_US,
    format_slot,
    format_slot_list,
    get_locale_profile,
)
from app.core.scheduling.response import ResponseGenerator, BusinessContext

# Orchestrator
from app.core.scheduling.orchestrator import (
    ConversationOrchestrator,
    OrchestratorResult,
)

__all__ = [
    # Calendar Client
    "GoogleCalendarClient",
    "CalendarEvent",
    "CalendarResult",
    "BusyInterval",
    # Availability
    "AvailabilityEngine",
    "AvailabilityWindow",
    "find_available_slots",
    # Ledger
    "AppointmentLedger",
    "can_transition",
    "get_valid_transitions",
    "is_terminal_status",
    # Routing
    "IntentRouter",
    "Action",
    "CreateAppointment",
    "ProposeSlots",
    "CancelAppointment",
    "NoActiveAppointment",
    "ConversationalReply",
    # Replies
    "LocaleProfile",
    "PT_BR",
    "EN_US",
    "format_slot",
    "format_slot_list",
    "get_locale_profile",
    "ResponseGenerator",
    "BusinessContext",
    # Orchestrator
    "ConversationOrchestrator",
    "OrchestratorResult",
]
