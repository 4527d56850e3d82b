"""
LLM-based booking-field extraction using Claude Haiku.

Extracts: date, time and the client's name. Failures yield an empty
BookingFields rather than an error.
"""

import json
import logging
import time
from datetime import date, time as time_type
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient, get_claude_client, strip_code_fence
from .types import BookingFields

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extraia informações de agendamento da mensagem do cliente.
Hoje é {today}.

Retorne APENAS um JSON no formato:
{{
  "date": "YYYY-MM-DD" ou null,
  "time": "HH:MM" ou null,
  "clientName": "nome" ou null
}}

Exemplos:
- "Quero agendar para amanhã às 14h" -> {{"date": "<amanhã>", "time": "14:00", "clientName": null}}
- "Meu nome é João, pode ser sexta?" -> {{"date": "<próxima sexta>", "time": null, "clientName": "João"}}

Mensagem:
"{message}"
"""


class BookingExtractor:
    """LLM-based extraction of booking fields."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize extractor.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def extract(self, message: str, today: Optional[date] = None) -> BookingFields:
        """
        Extract booking fields from a client message.

        Args:
            message: Client's message
            today: Reference date for relative expressions ("amanhã")

        Returns:
            BookingFields with whatever was found
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return BookingFields()

        prompt = EXTRACTION_PROMPT.format(
            today=(today or date.today()).isoformat(),
            message=message,
        )

        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_intent_model,
                max_tokens=150,
                temperature=0.3,
                use_fallback_on_error=True,
            )

            result = self._parse_response(response.content)
            result.processing_time_ms = (time.time() - start_time) * 1000
            result.raw_response = response.content

            logger.debug(f"Extracted booking fields: {result.to_dict()}")
            return result

        except Exception as e:
            logger.error(f"Extraction failed: {e}")
            return BookingFields()

    def _parse_response(self, response: str) -> BookingFields:
        """Parse LLM JSON response."""
        response = strip_code_fence(response)

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return BookingFields()

        if not isinstance(data, dict):
            return BookingFields()

        parsed_date = None
        if data.get("date"):
            try:
                parsed_date = date.fromisoformat(str(data["date"]))
            except ValueError:
                logger.warning(f"Invalid date format: {data['date']}")

        parsed_time = None
        if data.get("time"):
            try:
                parsed_time = time_type.fromisoformat(str(data["time"]))
            except ValueError:
                logger.warning(f"Invalid time format: {data['time']}")

        name = data.get("clientName") or data.get("client_name")

        return BookingFields(
            date=parsed_date,
            time=parsed_time,
            client_name=name.strip() if isinstance(name, str) and name.strip() else None,
        )


# Singleton
_extractor: Optional[BookingExtractor] = None


async def get_booking_extractor() -> BookingExtractor:
    """Get singleton BookingExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = BookingExtractor()
    return _extractor


async def extract_booking_fields(message: str, today: Optional[date] = None) -> BookingFields:
    """Convenience function to extract booking fields."""
    extractor = await get_booking_extractor()
    return await extractor.extract(message, today)
