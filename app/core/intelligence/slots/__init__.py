"""Booking-field extraction module."""

from .types import BookingFields
from .extractor import (
    BookingExtractor,
    get_booking_extractor,
    extract_booking_fields,
)

__all__ = [
    "BookingFields",
    "BookingExtractor",
    "get_booking_extractor",
    "extract_booking_fields",
]
