"""
WhatsApp Webhook Endpoints.

GET performs the Cloud API verification handshake; POST receives client
messages and runs them through the conversation orchestrator.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from app.api.deps import get_orchestrator
from app.config import settings
from app.core.errors import UserNotFoundError
from app.core.scheduling.orchestrator import ConversationOrchestrator
from app.infra.redis import MessageDeduplicator, get_message_deduplicator
from app.infra.whatsapp import parse_inbound, verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class WebhookResponse(BaseModel):
    """Outcome of a webhook delivery."""

    status: str
    intent: Optional[str] = None
    appointment_created: bool = False
    response: Optional[str] = None


@router.get(
    "/whatsapp",
    response_class=PlainTextResponse,
    summary="Webhook verification",
    description="Echoes hub.challenge when hub.verify_token matches the configured token.",
    responses={
        400: {"description": "Missing handshake parameters"},
        403: {"description": "Verification failed"},
    },
)
async def verify(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    if not mode or not token or not challenge:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing parameters",
        )

    echoed = verify_webhook(mode, token, challenge, settings.whatsapp_verify_token)
    if echoed is None:
        logger.warning("WhatsApp webhook verification failed")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Verification failed",
        )

    return PlainTextResponse(echoed)


@router.post(
    "/whatsapp",
    response_model=WebhookResponse,
    summary="Receive WhatsApp messages",
    description="Runs inbound text messages through the scheduling automation.",
    responses={
        502: {"description": "The reply could not be delivered"},
    },
)
async def receive(
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    deduplicator: MessageDeduplicator = Depends(get_message_deduplicator),
) -> WebhookResponse:
    """
    Process a webhook delivery.

    - Status callbacks and non-text messages: ``no_message``
    - Re-deliveries of an already handled message: ``duplicate``
    - Messages to an unregistered number: ``user_not_found`` (nothing sent)
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("WhatsApp webhook with a non-JSON body")
        return WebhookResponse(status="no_message")

    message = parse_inbound(payload)
    if message is None:
        return WebhookResponse(status="no_message")

    if not await deduplicator.claim(message.message_id):
        return WebhookResponse(status="duplicate")

    try:
        result = await orchestrator.handle_inbound(message)
    except UserNotFoundError:
        return WebhookResponse(status="user_not_found")
    except Exception:
        # Let the Cloud API retry delivery
        await deduplicator.release(message.message_id)
        raise

    return WebhookResponse(
        status=result.status,
        intent=result.intent.value if result.intent else None,
        appointment_created=result.appointment_created,
        response=result.response,
    )
