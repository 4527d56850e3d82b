"""Intent classification module."""

from .types import Intent, IntentResult, parse_intent
from .classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

__all__ = [
    # Types
    "Intent",
    "IntentResult",
    "parse_intent",
    # Classifier
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
]
