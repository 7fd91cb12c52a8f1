from __future__ import annotations

import logging

from app.config import Settings
from app.provider import Provider
from app.schemas import HealthResponse

logger = logging.getLogger(__name__)


async def check_token(provider: Provider, *, settings: Settings) -> bool:
    if not settings.has_token:
        return False
    return await provider.token_valid()


async def check_health(provider: Provider, *, settings: Settings) -> HealthResponse:
    token_valid = await check_token(provider, settings=settings)
    return HealthResponse(token_valid=token_valid, region=settings.region, has_token=settings.has_token)


async def log_token_status(provider: Provider, *, settings: Settings) -> None:
    if not settings.has_token:
        logger.warning("METAAPI_TOKEN is missing; provider calls will be rejected")
        return
    if await check_token(provider, settings=settings):
        logger.info("MetaApi token is valid")
    else:
        logger.error("MetaApi token is invalid or the provider is unreachable")
