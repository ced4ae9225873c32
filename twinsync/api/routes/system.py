"""Health endpoints.

- /health  Liveness probe (no dependency checks)
- /ready   Readiness probe (checks the database)
"""

import logging
from datetime import UTC, datetime
from enum import StrEnum

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text

from twinsync import __version__
from twinsync.storage import get_session

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    status: HealthStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    version: str = __version__


@router.get("/health", response_model=HealthResponse, summary="Health Check (Liveness)")
async def health_check() -> HealthResponse:
    """Returns healthy whenever the process is serving requests."""
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get("/ready", response_model=HealthResponse, summary="Readiness Probe")
async def readiness_check() -> HealthResponse:
    """503 until the database answers."""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Readiness check failed: %s", e)
        raise HTTPException(status_code=503, detail="Not ready: database unavailable") from e
    return HealthResponse(status=HealthStatus.HEALTHY)
