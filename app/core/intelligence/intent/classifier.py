"""
LLM-based intent classification using Claude Haiku.

Any failure (API error, unparseable JSON) yields OTHER with zero
confidence so the conversation falls through to a free-text reply.
"""

import json
import logging
import time
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient, get_claude_client, strip_code_fence
from .types import Intent, IntentResult, parse_intent

logger = logging.getLogger(__name__)


CLASSIFICATION_PROMPT = """Analise a mensagem de WhatsApp de um cliente e identifique a intenção principal.

Intenções:
- book: cliente quer marcar um horário
- cancel: cliente quer cancelar um agendamento
- reschedule: cliente quer mudar um horário já marcado
- inform: cliente quer informações (preço, localização, serviços)
- other: outras mensagens (saudações, agradecimentos, etc)

Mensagem do cliente:
"{message}"

Retorne APENAS um JSON no formato:
{{
    "intent": "book" | "cancel" | "reschedule" | "inform" | "other",
    "confidence": <0.0 a 1.0>
}}"""


class IntentClassifier:
    """LLM-based intent classifier using Claude Haiku."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize classifier.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def classify(self, message: str) -> IntentResult:
        """
        Classify a client message.

        Args:
            message: Raw message text

        Returns:
            IntentResult; OTHER/0.0 on any failure
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return IntentResult(intent=Intent.OTHER, confidence=0.0)

        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=CLASSIFICATION_PROMPT.format(message=message),
                model=settings.claude_intent_model,
                max_tokens=100,
                temperature=0.3,
                use_fallback_on_error=True,
            )
            result = self._parse_response(response.content)

        except Exception as e:
            logger.error(f"Intent classification failed: {e}")
            result = IntentResult(intent=Intent.OTHER, confidence=0.0)

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.info(f"Detected intent: {result.intent.value} (confidence: {result.confidence:.2f})")

        return result

    def _parse_response(self, response: str) -> IntentResult:
        """Parse LLM JSON response."""
        response = strip_code_fence(response)

        try:
            data = json.loads(response)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")

            return IntentResult(
                intent=parse_intent(data.get("intent")),
                confidence=float(data.get("confidence", 0.0)),
                raw_response=response,
            )

        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return IntentResult(
                intent=Intent.OTHER,
                confidence=0.0,
                raw_response=response,
            )


# Singleton
_classifier: Optional[IntentClassifier] = None


async def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier


async def classify_intent(message: str) -> IntentResult:
    """Convenience function to classify intent."""
    classifier = await get_intent_classifier()
    return await classifier.classify(message)
