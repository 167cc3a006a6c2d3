# Health router.
# Created: 2026-10-18

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter

from porter_oauth import __version__
from porter_oauth.api.v1.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])

SERVICE_NAME = "Porter OAuth Authorization Server"


@router.get("/health", response_model=HealthResponse)
async def get_health_status():
    """Liveness check."""
    return HealthResponse(
        timestamp=datetime.now(UTC).isoformat(),
        service=SERVICE_NAME,
        version=__version__,
    )
