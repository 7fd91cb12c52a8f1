from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from app.config import Settings
from app.http import ProviderRequestError, request_json

logger = logging.getLogger(__name__)

STATE_DEPLOYED = "DEPLOYED"
STATE_DEPLOY_FAILED = "DEPLOY_FAILED"
CONNECTION_CONNECTED = "CONNECTED"


@dataclass(frozen=True)
class AccountSnapshot:
    account_id: str
    state: str | None
    connection_status: str | None
    error_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, account_id: str, payload: Any) -> AccountSnapshot:
        data = payload if isinstance(payload, dict) else {}
        error_code = data.get("errorCode")
        return cls(
            account_id=str(data.get("_id") or data.get("id") or account_id),
            state=_upper(data.get("state")),
            connection_status=_upper(data.get("connectionStatus")),
            error_code=str(error_code) if error_code not in (None, "") else None,
            raw=data,
        )

    @property
    def deployed(self) -> bool:
        return self.state == STATE_DEPLOYED

    @property
    def connected(self) -> bool:
        return self.deployed and self.connection_status == CONNECTION_CONNECTED

    @property
    def failed(self) -> bool:
        return self.state == STATE_DEPLOY_FAILED or self.error_code is not None


@dataclass(frozen=True)
class SubscriberLookup:
    subscriber_id: str
    found: bool
    raw: dict[str, Any] | None = None


def _upper(value: Any) -> str | None:
    return value.upper() if isinstance(value, str) and value else None


class ProvisioningAdapter:
    """Trading account lifecycle at the provisioning API."""

    def __init__(self, *, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def _accounts_url(self, *parts: str) -> str:
        return "/".join([f"{self._base_url}/users/current/accounts", *parts])

    async def create_account(
        self,
        *,
        name: str,
        server: str,
        login: str,
        password: str,
        region: str,
        platform: str = "mt5",
        application: str = "CopyFactory",
    ) -> str:
        logger.info("Creating trading account name=%s server=%s region=%s", name, server, region)
        _, payload = await request_json(
            self._client,
            "POST",
            self._accounts_url(),
            json={
                "name": name,
                "type": "cloud",
                "region": region,
                "platform": platform,
                "server": server,
                "login": login,
                "password": password,
                "application": application,
            },
            error_message=f"Failed to create account {name}",
        )
        account_id = payload.get("id") if isinstance(payload, dict) else None
        if not account_id:
            raise ValueError(f"Provider returned no account id for {name}")
        logger.info("Created trading account id=%s", account_id)
        return str(account_id)

    async def deploy_account(self, account_id: str) -> None:
        logger.info("Deploying trading account id=%s", account_id)
        await request_json(
            self._client,
            "POST",
            self._accounts_url(account_id, "deploy"),
            error_message=f"Failed to deploy account {account_id}",
        )

    async def delete_account(self, account_id: str) -> bool:
        logger.info("Deleting trading account id=%s", account_id)
        status, _ = await request_json(
            self._client,
            "DELETE",
            self._accounts_url(account_id),
            error_message=f"Failed to delete account {account_id}",
            allow_status=frozenset({404}),
        )
        if status == 404:
            logger.debug("Trading account already absent: %s", account_id)
            return False
        return True

    async def get_account(self, account_id: str) -> AccountSnapshot:
        _, payload = await request_json(
            self._client,
            "GET",
            self._accounts_url(account_id),
            error_message=f"Failed to fetch account {account_id}",
        )
        snapshot = AccountSnapshot.from_payload(account_id, payload)
        logger.debug(
            "Account snapshot id=%s state=%s connection=%s error_code=%s",
            account_id,
            snapshot.state,
            snapshot.connection_status,
            snapshot.error_code,
        )
        return snapshot

    async def token_valid(self) -> bool:
        try:
            await request_json(
                self._client,
                "GET",
                self._accounts_url(),
                params={"limit": 1},
                error_message="Failed to list accounts",
            )
        except ProviderRequestError as exc:
            logger.warning("Token check failed: %s", exc)
            if exc.status_code is None or exc.status_code in (401, 403):
                return False
        return True


class ClientAdapter:
    """Live account data from the client API."""

    def __init__(self, *, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def _get(self, account_id: str, resource: str) -> Any:
        _, payload = await request_json(
            self._client,
            "GET",
            f"{self._base_url}/users/current/accounts/{account_id}/{resource}",
            error_message=f"Failed to fetch {resource} for account {account_id}",
        )
        return payload

    async def account_information(self, account_id: str) -> dict[str, Any]:
        payload = await self._get(account_id, "account-information")
        return payload if isinstance(payload, dict) else {}

    async def positions(self, account_id: str) -> list[dict[str, Any]]:
        payload = await self._get(account_id, "positions")
        return payload if isinstance(payload, list) else []

    async def orders(self, account_id: str) -> list[dict[str, Any]]:
        payload = await self._get(account_id, "orders")
        return payload if isinstance(payload, list) else []


class CopyFactoryAdapter:
    """Subscriber configuration at the copy-trading API."""

    def __init__(self, *, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def _subscriber_url(self, subscriber_id: str) -> str:
        return f"{self._base_url}/users/current/configuration/subscribers/{subscriber_id}"

    async def get_subscriber(self, subscriber_id: str) -> SubscriberLookup:
        status, payload = await request_json(
            self._client,
            "GET",
            self._subscriber_url(subscriber_id),
            error_message=f"Failed to fetch subscriber {subscriber_id}",
            allow_status=frozenset({404}),
        )
        if status == 404:
            logger.debug("Subscriber not found: %s", subscriber_id)
            return SubscriberLookup(subscriber_id=subscriber_id, found=False)
        return SubscriberLookup(
            subscriber_id=subscriber_id,
            found=True,
            raw=payload if isinstance(payload, dict) else None,
        )

    async def save_subscriber(self, subscriber_id: str, body: dict[str, Any]) -> None:
        logger.info("Saving subscriber %s", subscriber_id)
        await request_json(
            self._client,
            "PUT",
            self._subscriber_url(subscriber_id),
            json=body,
            error_message=f"Failed to save subscriber {subscriber_id}",
        )

    async def resynchronize(self, subscriber_id: str) -> None:
        logger.info("Resynchronizing subscriber %s", subscriber_id)
        await request_json(
            self._client,
            "POST",
            f"{self._base_url}/users/current/subscribers/{subscriber_id}/resynchronize",
            error_message=f"Failed to resynchronize subscriber {subscriber_id}",
        )


class Provider:
    """Facade over the MetaApi adapters used by the services."""

    def __init__(
        self,
        *,
        provisioning: ProvisioningAdapter,
        client_api: ClientAdapter,
        copyfactory: CopyFactoryAdapter,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provisioning = provisioning
        self.client_api = client_api
        self.copyfactory = copyfactory
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> Provider:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if settings.token:
            headers["auth-token"] = settings.token
        http_client = httpx.AsyncClient(
            headers=headers,
            timeout=settings.http_timeout,
            verify=settings.verify_tls,
            transport=transport,
        )
        return cls(
            provisioning=ProvisioningAdapter(client=http_client, base_url=settings.provisioning_url),
            client_api=ClientAdapter(client=http_client, base_url=settings.client_url),
            copyfactory=CopyFactoryAdapter(client=http_client, base_url=settings.copyfactory_url),
            http_client=http_client,
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    async def create_account(self, **kwargs: Any) -> str:
        return await self.provisioning.create_account(**kwargs)

    async def deploy_account(self, account_id: str) -> None:
        await self.provisioning.deploy_account(account_id)

    async def delete_account(self, account_id: str) -> bool:
        return await self.provisioning.delete_account(account_id)

    async def get_account(self, account_id: str) -> AccountSnapshot:
        return await self.provisioning.get_account(account_id)

    async def token_valid(self) -> bool:
        return await self.provisioning.token_valid()

    async def account_information(self, account_id: str) -> dict[str, Any]:
        return await self.client_api.account_information(account_id)

    async def positions(self, account_id: str) -> list[dict[str, Any]]:
        return await self.client_api.positions(account_id)

    async def orders(self, account_id: str) -> list[dict[str, Any]]:
        return await self.client_api.orders(account_id)

    async def get_subscriber(self, subscriber_id: str) -> SubscriberLookup:
        return await self.copyfactory.get_subscriber(subscriber_id)

    async def save_subscriber(self, subscriber_id: str, body: dict[str, Any]) -> None:
        await self.copyfactory.save_subscriber(subscriber_id, body)

    async def resynchronize(self, subscriber_id: str) -> None:
        await self.copyfactory.resynchronize(subscriber_id)
