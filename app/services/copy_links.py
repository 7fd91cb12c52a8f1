from __future__ import annotations

import logging
from typing import Any

from app.config import Settings
from app.http import ProviderRequestError
from app.provider import Provider
from app.schemas import CopyLinkRequest, CopyLinkResponse
from app.services.accounts import require_token
from app.services.errors import ProviderException, ValidationException

logger = logging.getLogger(__name__)

BASE_BALANCE = 1000


def build_subscriber(account_id: str, *, strategy_id: str, multiplier: float) -> dict[str, Any]:
    """Subscriber body with one subscription scaled by balance."""
    return {
        "name": f"{account_id}-subscriber",
        "accounts": [{"id": account_id}],
        "subscriptions": [
            {
                "strategyId": strategy_id,
                "tradeSizeScaling": {
                    "mode": "balance",
                    "baseBalance": BASE_BALANCE,
                    "targetBalance": multiplier * BASE_BALANCE,
                },
            }
        ],
    }


async def create_copy_link(
    provider: Provider,
    *,
    settings: Settings,
    payload: CopyLinkRequest,
) -> CopyLinkResponse:
    if not payload.account_id:
        raise ValidationException("Missing accountId")
    if payload.multiplier <= 0:
        raise ValidationException("multiplier must be positive")
    require_token(settings)

    account_id = payload.account_id
    try:
        lookup = await provider.get_subscriber(account_id)
        if lookup.found:
            logger.info("Updating subscriber %s for strategy %s", account_id, settings.strategy_id)
        else:
            logger.info("Subscriber %s does not exist, creating it", account_id)
        await provider.save_subscriber(
            account_id,
            build_subscriber(account_id, strategy_id=settings.strategy_id, multiplier=payload.multiplier),
        )
        if payload.mirror_open_trades:
            await provider.resynchronize(account_id)
    except ProviderRequestError as exc:
        logger.warning("Copy link failed for account %s: %s", account_id, exc)
        raise ProviderException(str(exc)) from exc

    return CopyLinkResponse(
        subscriber_id=account_id,
        strategy_id=settings.strategy_id,
        multiplier=payload.multiplier,
        mirrored=payload.mirror_open_trades,
        created=not lookup.found,
    )
