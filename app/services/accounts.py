from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from app.config import Settings
from app.http import ProviderRequestError
from app.poller import Connected, Outcome, wait_until_connected
from app.provider import Provider
from app.schemas import AccountCounts, AccountMetricsResponse, LinkAccountRequest, LinkAccountResponse
from app.services.errors import (
    AccountNotDeployedException,
    ConfigurationException,
    ProviderException,
    ValidationException,
)

logger = logging.getLogger(__name__)

_LINK_FIELDS = ("broker_server", "login", "password")
_WIRE_NAMES = {"broker_server": "brokerServer", "login": "login", "password": "password"}


@dataclass(frozen=True)
class LinkAccountResult:
    response: LinkAccountResponse
    outcome: Outcome | None

    @property
    def ok(self) -> bool:
        return self.response.ok


def require_token(settings: Settings) -> None:
    if not settings.has_token:
        raise ConfigurationException("METAAPI_TOKEN missing")


def describe_outcome(outcome: Outcome) -> str:
    if isinstance(outcome, Connected):
        return "Account connected"
    if outcome.kind == "failed":
        return (
            f"Account deployment failed (state={outcome.lifecycle_state}, "
            f"connection={outcome.connection_status}, errorCode={outcome.error_code})"
        )
    if outcome.cancelled:
        return "Waiting for account connection was cancelled"
    message = (
        f"Timed out waiting for account connection after {outcome.elapsed:.0f}s "
        f"(state={outcome.lifecycle_state}, connection={outcome.connection_status})"
    )
    if outcome.last_error:
        message = f"{message}: {outcome.last_error}"
    return message


async def link_account(
    provider: Provider,
    *,
    settings: Settings,
    payload: LinkAccountRequest,
    cancel_event: asyncio.Event | None = None,
) -> LinkAccountResult:
    """Create, deploy and wait for a trading account to connect.

    With ``dry_run`` the account is deleted again once it exists, whether the
    deploy and wait succeed, fail or raise, so the call only proves that the
    credentials work.
    """
    missing = [_WIRE_NAMES[name] for name in _LINK_FIELDS if not getattr(payload, name)]
    if missing:
        raise ValidationException(f"Missing fields: {', '.join(missing)}")
    require_token(settings)

    login = str(payload.login)
    server = str(payload.broker_server)
    try:
        account_id = await provider.create_account(
            name=f"{login}@{server}",
            server=server,
            login=login,
            password=payload.password,
            region=settings.region,
        )
    except (ProviderRequestError, ValueError) as exc:
        logger.warning("Link account failed for login=%s server=%s: %s", login, server, exc)
        raise ProviderException(str(exc)) from exc

    try:
        try:
            await provider.deploy_account(account_id)
        except ProviderRequestError as exc:
            logger.warning("Deploy failed for account id=%s: %s", account_id, exc)
            raise ProviderException(str(exc)) from exc

        outcome = await wait_until_connected(
            provider,
            account_id,
            max_wait=settings.link_max_wait,
            poll_interval=settings.link_poll_interval,
            cancel_event=cancel_event,
        )
    finally:
        if payload.dry_run:
            await _cleanup(provider, account_id)

    if payload.dry_run:
        if isinstance(outcome, Connected):
            return LinkAccountResult(response=LinkAccountResponse(ok=True, dry_run=True), outcome=outcome)
        return LinkAccountResult(
            response=LinkAccountResponse(
                ok=False, dry_run=True, error=describe_outcome(outcome), outcome=outcome.to_dict()
            ),
            outcome=outcome,
        )

    if isinstance(outcome, Connected):
        logger.info("Linked account id=%s login=%s server=%s", account_id, login, server)
        return LinkAccountResult(
            response=LinkAccountResponse(
                ok=True,
                account_id=account_id,
                region=settings.region,
                state=outcome.lifecycle_state,
                connection_status=outcome.connection_status,
            ),
            outcome=outcome,
        )

    logger.warning("Link account id=%s did not connect: %s", account_id, outcome.kind)
    return LinkAccountResult(
        response=LinkAccountResponse(
            ok=False,
            account_id=account_id,
            region=settings.region,
            error=describe_outcome(outcome),
            outcome=outcome.to_dict(),
        ),
        outcome=outcome,
    )


async def _cleanup(provider: Provider, account_id: str) -> None:
    try:
        await provider.delete_account(account_id)
    except ProviderRequestError as exc:
        raise ProviderException(f"Dry run cleanup failed for account {account_id}: {exc}") from exc
    logger.info("Dry run: removed account id=%s", account_id)


async def wait_connected(
    provider: Provider,
    *,
    settings: Settings,
    account_id: str | None,
    max_wait: float | None = None,
    poll_interval: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> Outcome:
    if not account_id:
        raise ValidationException("Missing accountId")
    require_token(settings)
    return await wait_until_connected(
        provider,
        account_id,
        max_wait=max_wait or settings.link_max_wait,
        poll_interval=poll_interval or settings.link_poll_interval,
        cancel_event=cancel_event,
    )


async def account_metrics(
    provider: Provider,
    *,
    settings: Settings,
    account_id: str | None,
    cancel_event: asyncio.Event | None = None,
) -> AccountMetricsResponse:
    if not account_id:
        raise ValidationException("Missing id")
    require_token(settings)

    try:
        snapshot = await provider.get_account(account_id)
    except ProviderRequestError as exc:
        raise ProviderException(str(exc)) from exc
    if not snapshot.deployed:
        raise AccountNotDeployedException("Account not deployed")

    outcome = await wait_until_connected(
        provider,
        account_id,
        max_wait=settings.metrics_max_wait,
        poll_interval=settings.link_poll_interval,
        cancel_event=cancel_event,
    )
    if not isinstance(outcome, Connected):
        raise ProviderException(describe_outcome(outcome))

    try:
        info = await provider.account_information(account_id)
        positions = await provider.positions(account_id)
        orders = await provider.orders(account_id)
    except ProviderRequestError as exc:
        raise ProviderException(str(exc)) from exc

    return AccountMetricsResponse(
        info=info,
        counts=AccountCounts(positions=len(positions), orders=len(orders)),
    )
