from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.utils import get_provider, get_settings
from app.config import Settings
from app.provider import Provider
from app.schemas import HealthResponse
from app.services import health as health_service

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(
    provider: Provider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    return await health_service.check_health(provider, settings=settings)
