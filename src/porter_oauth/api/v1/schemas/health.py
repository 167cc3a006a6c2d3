# Health schemas.
# Created: 2026-10-18

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str
    service: str
    version: str
