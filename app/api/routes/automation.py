"""
Automation API Endpoint.

Runs a message through the scheduling automation for an explicit user,
without going through the WhatsApp webhook, and triggers the outbound
confirmation and reminder messages.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.deps import get_notifier, get_orchestrator, get_user_repository
from app.core.errors import AppointmentNotFoundError, UserNotFoundError
from app.core.scheduling.notifications import AppointmentNotifier
from app.core.scheduling.orchestrator import ConversationOrchestrator
from app.infra.repositories import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation", tags=["Automation"])


class ProcessRequest(BaseModel):
    """Message to process on behalf of a user."""

    user_id: uuid.UUID = Field(
        ...,
        description="Owning user",
    )
    client_phone: str = Field(
        ...,
        min_length=1,
        description="Client's WhatsApp number",
        examples=["5511999999999"],
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=4096,
        description="Client's message",
        examples=["Quero agendar amanhã às 14h"],
    )


class ProcessResponse(BaseModel):
    """Automation outcome."""

    success: bool
    response: str = Field(..., description="Reply text")
    intent: Optional[str] = Field(default=None, description="Detected intent")
    appointment_created: bool = False
    appointment_id: Optional[str] = None
    delivered: bool = Field(
        default=False,
        description="Whether the reply was sent over WhatsApp",
    )


@router.post(
    "/process",
    response_model=ProcessResponse,
    status_code=status.HTTP_200_OK,
    summary="Process a client message",
    responses={
        404: {"description": "User not found"},
        422: {"description": "Missing or invalid fields"},
        502: {"description": "The reply could not be delivered"},
    },
)
async def process(
    request: ProcessRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ProcessResponse:
    """
    Classify, act and reply.

    The reply is sent over WhatsApp only when the user has credentials
    configured; it is always returned in the response.
    """
    try:
        result = await orchestrator.process(
            user_id=request.user_id,
            client_phone=request.client_phone,
            text=request.message,
        )
    except UserNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    return ProcessResponse(
        success=True,
        response=result.response,
        intent=result.intent.value if result.intent else None,
        appointment_created=result.appointment_created,
        appointment_id=result.appointment_id,
        delivered=result.delivered,
    )


class ConfirmationRequest(BaseModel):
    user_id: uuid.UUID = Field(..., description="Owning user")
    appointment_id: uuid.UUID = Field(..., description="Appointment to confirm")


class ConfirmationResponse(BaseModel):
    success: bool
    message_id: Optional[str] = None


class RemindersRequest(BaseModel):
    user_id: uuid.UUID = Field(..., description="User whose clients to remind")


class RemindersResponse(BaseModel):
    success: bool
    sent: list[str] = Field(default_factory=list, description="Appointments reminded")
    failed: list[str] = Field(default_factory=list, description="Appointments whose reminder failed")


@router.post(
    "/confirmation",
    response_model=ConfirmationResponse,
    summary="Send the confirmation template",
    responses={
        404: {"description": "User or appointment not found"},
        502: {"description": "The template could not be delivered"},
    },
)
async def send_confirmation(
    request: ConfirmationRequest,
    users: UserRepository = Depends(get_user_repository),
    notifier: AppointmentNotifier = Depends(get_notifier),
) -> ConfirmationResponse:
    """Works outside the 24h session window, unlike a plain text reply."""
    user = await users.get(request.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    try:
        result = await notifier.send_confirmation(user, request.appointment_id)
    except AppointmentNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")

    return ConfirmationResponse(success=True, message_id=result.message_id)


@router.post(
    "/reminders",
    response_model=RemindersResponse,
    summary="Send today's reminders",
    responses={
        404: {"description": "User not found"},
        502: {"description": "User has no WhatsApp credentials"},
    },
)
async def send_reminders(
    request: RemindersRequest,
    users: UserRepository = Depends(get_user_repository),
    notifier: AppointmentNotifier = Depends(get_notifier),
) -> RemindersResponse:
    """Remind clients booked for later today. Meant to be called by a scheduler."""
    user = await users.get(request.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    run = await notifier.send_day_reminders(user)
    return RemindersResponse(success=True, sent=run.sent, failed=run.failed)
