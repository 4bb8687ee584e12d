"""
Health Check Routes

Endpoints for service health monitoring.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..dependencies import Services, get_services


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    timestamp: str


class ReadyResponse(BaseModel):
    """Readiness check response."""
    ready: bool
    services: dict


@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        service="cora-assistant-gateway",
        version=services.settings.api_version,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(services: Services = Depends(get_services)):
    """
    Readiness check endpoint.

    Reports the generator backend, knowledge size and registered channels.
    """
    stats = services.cora.get_stats()
    return ReadyResponse(
        ready=True,
        services={
            "assistant": stats["backend"],
            "knowledge_documents": stats["knowledge"]["total_documents"],
            "channels": services.router.list_channels(),
        },
    )


@router.get("/ping")
async def ping():
    """Simple ping endpoint."""
    return {"pong": True}
