"""
WhatsApp Cloud API adapter.

- Parsing inbound webhook payloads into InboundMessage
- The GET verification handshake
- Sending text replies, templates, reminders and read receipts for one
  business number
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from app.config import get_settings
from app.core.errors import MessagingServiceError

logger = logging.getLogger(__name__)

REMINDER_TEXT = "Oi {name}! Lembrete: você tem um horário marcado hoje às {time}. Te espero! 😊"


@dataclass
class InboundMessage:
    """A client text message extracted from a webhook payload."""

    sender: str
    text: str
    message_id: str
    timestamp: Optional[str] = None
    business_number: Optional[str] = None     # display_phone_number
    phone_number_id: Optional[str] = None     # Graph id of the receiving number

    @property
    def owner_identifier(self) -> str:
        """Number the owning account is registered under."""
        return self.business_number or self.sender


@dataclass
class SendResult:
    """Delivery receipt for an outbound message."""

    message_id: Optional[str]
    recipient: str


def _first(items: Any) -> Optional[dict]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def parse_inbound(payload: Any) -> Optional[InboundMessage]:
    """Extract the first text message from a webhook payload.

    Status callbacks, media messages and malformed bodies return None.
    """
    if not isinstance(payload, dict):
        return None

    change = _first((_first(payload.get("entry")) or {}).get("changes"))
    value = (change or {}).get("value")
    if not isinstance(value, dict):
        return None

    message = _first(value.get("messages"))
    if message is None or message.get("type") != "text":
        return None

    text = (message.get("text") or {}).get("body")
    sender = message.get("from")
    message_id = message.get("id")
    if not isinstance(text, str) or not text.strip() or not sender or not message_id:
        return None

    metadata = value.get("metadata") or {}
    return InboundMessage(
        sender=str(sender),
        text=text,
        message_id=str(message_id),
        timestamp=message.get("timestamp"),
        business_number=metadata.get("display_phone_number"),
        phone_number_id=metadata.get("phone_number_id"),
    )


def verify_webhook(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: str,
) -> Optional[str]:
    """Echo the challenge iff the subscription request carries our token."""
    if mode != "subscribe" or not token or not expected_token:
        return None
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        return None
    return challenge


class WhatsAppClient:
    """
    Sends messages from one business number.

    Endpoint: POST /{phone_number_id}/messages
    """

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.base_url = base_url or settings.whatsapp_api_url
        self.timeout = timeout or settings.external_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def _messages_path(self) -> str:
        return f"/{self.phone_number_id}/messages"

    async def send_text(self, to: str, text: str) -> SendResult:
        """Send a text message. Not retried.

        Raises:
            MessagingServiceError: the API rejected the message or was unreachable
        """
        return await self._send(to, {"type": "text", "text": {"body": text}})

    async def send_template(
        self,
        to: str,
        template_name: str,
        language: str,
        body_parameters: Sequence[str] = (),
    ) -> SendResult:
        """Send a pre-approved template; usable outside the 24h session window."""
        template: dict[str, Any] = {"name": template_name, "language": {"code": language}}
        if body_parameters:
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": p} for p in body_parameters],
                }
            ]
        return await self._send(to, {"type": "template", "template": template})

    async def send_confirmation_template(
        self,
        to: str,
        client_name: str,
        date_text: str,
        time_text: str,
    ) -> SendResult:
        """Send the appointment_confirmation template (name, date, time)."""
        settings = get_settings()
        return await self.send_template(
            to,
            settings.whatsapp_confirmation_template,
            settings.whatsapp_template_language,
            [client_name, date_text, time_text],
        )

    async def send_appointment_reminder(
        self,
        to: str,
        client_name: str,
        time_text: str,
    ) -> SendResult:
        """Send the same-day reminder as plain text."""
        return await self.send_text(to, REMINDER_TEXT.format(name=client_name, time=time_text))

    async def _send(self, to: str, body: dict[str, Any]) -> SendResult:
        client = await self._get_client()
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            **body,
        }

        try:
            response = await client.post(self._messages_path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp send to {to} failed: {e}")
            raise MessagingServiceError(f"Unable to reach WhatsApp: {e}") from e

        if response.status_code not in (200, 201):
            logger.error(f"WhatsApp API error {response.status_code}: {response.text}")
            raise MessagingServiceError(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            data = None
        # Delivery is accepted once the API answers 2xx; the id is informational
        message_id = (_first(data.get("messages")) or {}).get("id") if isinstance(data, dict) else None
        logger.info(f"WhatsApp {body['type']} message sent to {to}: {message_id}")
        return SendResult(message_id=message_id, recipient=to)

    async def mark_read(self, message_id: str) -> bool:
        """Mark an inbound message as read. Best effort, never raises."""
        try:
            client = await self._get_client()
            response = await client.post(
                self._messages_path,
                json={
                    "messaging_product": "whatsapp",
                    "status": "read",
                    "message_id": message_id,
                },
            )
            if response.status_code != 200:
                logger.warning(f"Mark-read for {message_id} returned HTTP {response.status_code}")
                return False
            return True

        except httpx.HTTPError as e:
            logger.warning(f"Mark-read for {message_id} failed: {e}")
            return False
