"""
Intelligence Layer Module

Intent classification and booking-field extraction for client messages.

Usage:
    from app.core.intelligence import classify_intent, extract_booking_fields

    result = await classify_intent("Quero agendar amanhã às 14h")
    print(result.intent)  # Intent.BOOK

    fields = await extract_booking_fields("Quero agendar amanhã às 14h")
    print(fields.time)  # 14:00:00
"""

# Intent Classification
from app.core.intelligence.intent.types import Intent, IntentResult, parse_intent
from app.core.intelligence.intent.classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

# Booking-field Extraction
from app.core.intelligence.slots.types import BookingFields
from app.core.intelligence.slots.extractor import (
    BookingExtractor,
    get_booking_extractor,
    extract_booking_fields,
)

__all__ = [
    # Intent
    "Intent",
    "IntentResult",
    "parse_intent",
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
    # Booking fields
    "BookingFields",
    "BookingExtractor",
    "get_booking_extractor",
    "extract_booking_fields",
]
