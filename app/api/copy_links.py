from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.utils import get_provider, get_settings
from app.config import Settings
from app.provider import Provider
from app.schemas import CopyLinkRequest, CopyLinkResponse
from app.services import copy_links as copy_link_service

router = APIRouter(prefix="/api", tags=["copy-trading"])


@router.post("/create-copy-link", response_model=CopyLinkResponse)
async def create_copy_link(
    payload: CopyLinkRequest,
    provider: Provider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
) -> CopyLinkResponse:
    return await copy_link_service.create_copy_link(provider, settings=settings, payload=payload)
