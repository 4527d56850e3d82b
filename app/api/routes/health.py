"""
Health Endpoints

Liveness and readiness for the load balancer. Only the database gates
readiness; Redis is reported as degraded when unreachable.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

API_VERSION = "0.1.0"


class StatusResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str = API_VERSION
    environment: str = ""
    checks: dict[str, str] = {}


async def _dependency_checks() -> tuple[bool, dict[str, str]]:
    """Database state decides readiness; Redis only annotates it."""
    checks: dict[str, str] = {}

    try:
        db_ok = await check_db_health()
    except Exception as e:
        logger.error(f"Database check raised: {e}")
        db_ok = False
    checks["database"] = "ok" if db_ok else "unavailable"

    # De-duplication is skipped without Redis, the webhook still answers
    checks["redis"] = "ok" if await check_redis_health() else "degraded"

    return db_ok, checks


@router.get("", response_model=StatusResponse, summary="Service status")
async def health():
    """Same checks as readiness, plus version and environment."""
    db_ok, checks = await _dependency_checks()
    body = StatusResponse(
        status="healthy" if db_ok else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        checks=checks,
    )
    if not db_ok:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))
    return body


@router.get(
    "/ready",
    response_model=StatusResponse,
    summary="Readiness",
    responses={503: {"description": "Database unavailable"}},
)
async def ready():
    db_ok, checks = await _dependency_checks()
    if not db_ok:
        logger.warning(f"Not ready: {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=StatusResponse(
                status="not_ready",
                timestamp=datetime.now(timezone.utc),
                checks=checks,
            ).model_dump(mode="json"),
        )
    return StatusResponse(status="ready", timestamp=datetime.now(timezone.utc), checks=checks)


@router.get("/live", response_model=StatusResponse, summary="Liveness")
async def live() -> StatusResponse:
    """The process is up; no dependency is touched."""
    return StatusResponse(status="alive", timestamp=datetime.now(timezone.utc))
