"""
Calendar Sync Endpoint.

Pulls upcoming Google Calendar events into the appointment ledger.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.deps import get_calendar_factory, get_ledger, get_user_repository
from app.config import settings
from app.core.scheduling.ledger import AppointmentLedger
from app.core.scheduling.orchestrator import CalendarFactory
from app.infra.repositories import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["Calendar"])


class SyncRequest(BaseModel):
    user_id: uuid.UUID = Field(..., description="User whose calendar to sync")


class SyncResponse(BaseModel):
    success: bool
    synced_events: int = Field(..., description="Events read from the calendar")
    inserted: int = Field(..., description="Appointments created locally")


@router.post(
    "/sync",
    response_model=SyncResponse,
    summary="Sync calendar events",
    description="Inserts calendar events from the next days that the ledger does not know yet.",
    responses={
        404: {"description": "User not found or calendar not connected"},
        502: {"description": "Google Calendar unavailable"},
    },
)
async def sync(
    request: SyncRequest,
    users: UserRepository = Depends(get_user_repository),
    ledger: AppointmentLedger = Depends(get_ledger),
    calendar_for: CalendarFactory = Depends(get_calendar_factory),
) -> SyncResponse:
    """Safe to call repeatedly: events are matched by their calendar id."""
    user = await users.get(request.user_id)
    calendar = calendar_for(user) if user is not None else None
    if calendar is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found or not connected",
        )

    now = datetime.now(timezone.utc)
    try:
        events = await calendar.list_events(now, now + timedelta(days=settings.sync_lookahead_days))
    finally:
        await calendar.close()

    inserted = await ledger.sync_from_external_calendar(user.id, events)

    return SyncResponse(success=True, synced_events=len(events), inserted=inserted)
