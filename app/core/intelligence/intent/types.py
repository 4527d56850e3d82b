"""Intent types for conversation classification."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    """Client intent categories."""

    BOOK = "book"                # Wants a new appointment
    CANCEL = "cancel"            # Cancel an existing one
    RESCHEDULE = "reschedule"    # Move an existing one
    INFORM = "inform"            # Price, location, services
    OTHER = "other"              # Greetings, thanks, anything else


# Labels the model may answer with, including the Portuguese ones
INTENT_ALIASES: dict[str, Intent] = {
    "book": Intent.BOOK,
    "agendar": Intent.BOOK,
    "cancel": Intent.CANCEL,
    "cancelar": Intent.CANCEL,
    "reschedule": Intent.RESCHEDULE,
    "reagendar": Intent.RESCHEDULE,
    "inform": Intent.INFORM,
    "informacao": Intent.INFORM,
    "informação": Intent.INFORM,
    "other": Intent.OTHER,
    "outro": Intent.OTHER,
}


def parse_intent(label: Optional[str]) -> Intent:
    """Map a model label to an Intent, defaulting to OTHER."""
    if not label:
        return Intent.OTHER
    return INTENT_ALIASES.get(label.strip().lower(), Intent.OTHER)


@dataclass
class IntentResult:
    """Result of intent classification."""

    intent: Intent
    confidence: float  # 0.0 - 1.0

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    # Processing time
    processing_time_ms: float = 0.0

    def __post_init__(self) -> None:
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)

    def clears(self, threshold: float) -> bool:
        """Strictly above the cutoff."""
        return self.confidence > threshold

    @property
    def is_booking_related(self) -> bool:
        """Check if intent is related to appointments."""
        return self.intent in {
            Intent.BOOK,
            Intent.CANCEL,
            Intent.RESCHEDULE,
        }

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
        }
