"""
Status API routes - Liveness and readiness checks.

Public endpoints (no auth) for load balancers and orchestrators.
"""

import time
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from mcp_gateway.config import settings
from mcp_gateway.db.session import get_db

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

DEGRADED_LATENCY_THRESHOLD = 1000  # ms


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class HealthResponse(BaseModel):
    """Response for /health."""

    status: str = "ok"
    service: str
    version: str
    timestamp: str = Field(..., description="ISO 8601 timestamp")


class ReadinessResponse(BaseModel):
    """Response for /health/ready."""

    status: StatusLevel
    database_latency_ms: int | None = None
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness: the process is up."""
    return HealthResponse(
        service=settings.service_name,
        version=settings.api_version,
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(db: Annotated[AsyncSession, Depends(get_db)]) -> JSONResponse:
    """Readiness: the credential store answers."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("database_health_check_failed", error=str(e))
        body = ReadinessResponse(
            status=StatusLevel.OUTAGE, timestamp=timestamp, message="Connection failed"
        )
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))

    latency_ms = int((time.perf_counter() - start) * 1000)
    status = (
        StatusLevel.DEGRADED if latency_ms > DEGRADED_LATENCY_THRESHOLD else StatusLevel.OPERATIONAL
    )
    body = ReadinessResponse(
        status=status,
        database_latency_ms=latency_ms,
        timestamp=timestamp,
        message="High latency" if status == StatusLevel.DEGRADED else None,
    )
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))
