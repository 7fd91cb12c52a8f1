from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from starlette.responses import JSONResponse

from app.api.utils import cancel_on_disconnect, get_provider, get_settings
from app.config import Settings
from app.poller import Connected
from app.provider import Provider
from app.schemas import (
    AccountMetricsResponse,
    LinkAccountRequest,
    LinkAccountResponse,
    WaitConnectedRequest,
    WaitConnectedResponse,
)
from app.services import accounts as account_service

router = APIRouter(prefix="/api", tags=["accounts"])


@router.post("/link-account", response_model=LinkAccountResponse, response_model_exclude_none=True)
async def link_account(
    payload: LinkAccountRequest,
    request: Request,
    provider: Provider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    async with cancel_on_disconnect(request) as cancel_event:
        result = await account_service.link_account(
            provider, settings=settings, payload=payload, cancel_event=cancel_event
        )
    if result.ok:
        return result.response
    return JSONResponse(result.response.model_dump(by_alias=True, exclude_none=True), status_code=400)


@router.post("/wait-connected", response_model=WaitConnectedResponse)
async def wait_connected(
    payload: WaitConnectedRequest,
    request: Request,
    provider: Provider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    async with cancel_on_disconnect(request) as cancel_event:
        outcome = await account_service.wait_connected(
            provider,
            settings=settings,
            account_id=payload.account_id,
            max_wait=payload.max_wait,
            poll_interval=payload.poll_interval,
            cancel_event=cancel_event,
        )
    response = WaitConnectedResponse(ok=isinstance(outcome, Connected), outcome=outcome.to_dict())
    if response.ok:
        return response
    return JSONResponse(response.model_dump(by_alias=True), status_code=400)


@router.get("/account-metrics", response_model=AccountMetricsResponse)
async def account_metrics(
    request: Request,
    account_id: Optional[str] = Query(default=None, alias="id"),
    provider: Provider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
) -> AccountMetricsResponse:
    async with cancel_on_disconnect(request) as cancel_event:
        return await account_service.account_metrics(
            provider, settings=settings, account_id=account_id, cancel_event=cancel_event
        )
