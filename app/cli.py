from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import typer
import yaml
from fastapi.encoders import jsonable_encoder

from app.config import Settings
from app.logging_config import configure_logging
from app.poller import Connected
from app.provider import Provider
from app.schemas import CopyLinkRequest, LinkAccountRequest
from app.services import accounts as account_service, copy_links as copy_link_service, health as health_service
from app.services.errors import MetaLinkException

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="MetaLink CLI", pretty_exceptions_show_locals=False)

T = TypeVar("T")

# Replaced in tests to avoid real provider calls.
provider_factory: Callable[[Settings], Provider] = Provider.from_settings


def _exit_for_domain_error(exc: MetaLinkException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity, by_alias=True, exclude_none=True)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except MetaLinkException as e:
        _exit_for_domain_error(e)


def _run(call: Callable[[Provider, Settings], Awaitable[T]]) -> T:
    settings = _load_settings()

    async def runner() -> T:
        provider = provider_factory(settings)
        try:
            return await call(provider, settings)
        finally:
            await provider.aclose()

    try:
        return asyncio.run(runner())
    except MetaLinkException as e:
        _exit_for_domain_error(e)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int | None = typer.Option(None, "--port", help="Defaults to $PORT or 3000."),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    from app.main import run

    run(host=host, port=port, reload=reload)


@app.command("health")
def health() -> None:
    report = _run(lambda provider, settings: health_service.check_health(provider, settings=settings))
    _echo_yaml_entity(report)


@app.command("link-account")
def link_account(
    broker_server: str = typer.Option(..., "--broker-server", help="Broker server name, e.g. 'ICMarketsSC-Demo'."),
    login: str = typer.Option(..., "--login"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    dry_run: bool = typer.Option(False, "--dry-run", help="Delete the account again after the connection check."),
) -> None:
    payload = LinkAccountRequest(broker_server=broker_server, login=login, password=password, dry_run=dry_run)
    result = _run(
        lambda provider, settings: account_service.link_account(provider, settings=settings, payload=payload)
    )
    _echo_yaml_entity(result.response)
    if not result.ok:
        raise typer.Exit(code=2)


@app.command("wait-connected")
def wait_connected(
    account_id: str,
    max_wait: float | None = typer.Option(None, "--max-wait", help="Seconds; defaults to $LINK_MAX_WAIT_SEC."),
    poll_interval: float | None = typer.Option(
        None, "--poll-interval", help="Seconds; defaults to $LINK_POLL_INTERVAL_SEC."
    ),
) -> None:
    outcome = _run(
        lambda provider, settings: account_service.wait_connected(
            provider,
            settings=settings,
            account_id=account_id,
            max_wait=max_wait,
            poll_interval=poll_interval,
        )
    )
    _echo_yaml_entity(outcome.to_dict())
    if not isinstance(outcome, Connected):
        raise typer.Exit(code=2)


@app.command("account-metrics")
def account_metrics(account_id: str) -> None:
    metrics = _run(
        lambda provider, settings: account_service.account_metrics(
            provider, settings=settings, account_id=account_id
        )
    )
    _echo_yaml_entity(metrics)


@app.command("create-copy-link")
def create_copy_link(
    account_id: str,
    multiplier: float = typer.Option(1.0, "--multiplier"),
    mirror_open_trades: bool = typer.Option(True, "--mirror/--no-mirror", help="Copy already open trades."),
) -> None:
    payload = CopyLinkRequest(account_id=account_id, multiplier=multiplier, mirror_open_trades=mirror_open_trades)
    result = _run(
        lambda provider, settings: copy_link_service.create_copy_link(provider, settings=settings, payload=payload)
    )
    _echo_yaml_entity(result)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
