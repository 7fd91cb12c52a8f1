import asyncio
from types import SimpleNamespace
import time

import pytest
from starlette.testclient import TestClient

from app.api.utils import cancel_on_disconnect
from app.config import Settings
from app.http import ProviderRequestError, ProviderResponse
from app.main import create_app
from app.poller import Connected, TimedOut, wait_until_connected
from tests.provider_utils import CONNECTED, DEPLOY_FAILED, DEPLOYING, FakeProvider, snapshot

LINK_BODY = {"brokerServer": "Broker-Demo", "login": 123456, "password": "secret"}


def test_health_reports_token_state(client, provider):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "tokenValid": True, "region": "london", "hasToken": True}
    assert ("token_valid", {}) in provider.calls


def test_health_without_token_skips_token_check(provider):
    app = create_app(settings=Settings(token=None, region="new-york"), provider=provider)
    with TestClient(app) as client:
        resp = client.get("/api/health")
    assert resp.json() == {"ok": True, "tokenValid": False, "region": "new-york", "hasToken": False}
    assert provider.calls == []


def test_link_account_flow(client, provider):
    resp = client.post("/api/link-account", json=LINK_BODY)
    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "accountId": "acc-1",
        "region": "london",
        "state": "DEPLOYED",
        "connectionStatus": "CONNECTED",
    }
    names = [name for name, _ in provider.calls]
    assert names == ["create_account", "deploy_account", "get_account"]
    create_kwargs = provider.calls[0][1]
    assert create_kwargs["name"] == "123456@Broker-Demo"
    assert create_kwargs["login"] == "123456"
    assert create_kwargs["region"] == "london"


def test_link_account_missing_fields(client, provider):
    resp = client.post("/api/link-account", json={"login": "1"})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "Missing fields: brokerServer, password"}
    assert provider.calls == []


def test_link_account_without_token_is_server_error(provider):
    app = create_app(settings=Settings(token=None), provider=provider)
    with TestClient(app) as client:
        resp = client.post("/api/link-account", json=LINK_BODY)
    assert resp.status_code == 500
    assert resp.json() == {"ok": False, "error": "METAAPI_TOKEN missing"}


def test_link_account_deploy_failure_returns_400(client, provider):
    provider.snapshots = [DEPLOYING, DEPLOY_FAILED]
    resp = client.post("/api/link-account", json=LINK_BODY)
    assert resp.status_code == 400
    body = resp.json()
    assert body["ok"] is False
    assert body["accountId"] == "acc-1"
    assert body["outcome"]["kind"] == "failed"
    assert body["outcome"]["raw"]["state"] == "DEPLOY_FAILED"
    assert "deployment failed" in body["error"]


def test_link_account_timeout_returns_400(client, provider):
    provider.snapshots = [DEPLOYING]
    resp = client.post("/api/link-account", json=LINK_BODY)
    assert resp.status_code == 400
    body = resp.json()
    assert body["outcome"]["kind"] == "timed_out"
    assert body["outcome"]["lifecycleState"] == "DEPLOYING"
    assert body["error"].startswith("Timed out")


def test_link_account_create_rejected_by_provider(client, provider):
    provider.raise_on["create_account"] = ProviderRequestError(
        message="Failed to create account",
        response=ProviderResponse(method="POST", url="https://prov.test", status_code=400, body="E_SRV_NOT_FOUND"),
        category="fatal",
    )
    resp = client.post("/api/link-account", json=LINK_BODY)
    assert resp.status_code == 400
    assert "E_SRV_NOT_FOUND" in resp.json()["error"]


def test_link_account_dry_run_cleans_up(client, provider):
    resp = client.post("/api/link-account", json={**LINK_BODY, "dryRun": True})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "dryRun": True}
    assert provider.calls[-1] == ("delete_account", {"account_id": "acc-1"})


def test_link_account_dry_run_cleans_up_after_failure(client, provider):
    provider.snapshots = [DEPLOY_FAILED]
    resp = client.post("/api/link-account", json={**LINK_BODY, "dryRun": True})
    assert resp.status_code == 400
    assert resp.json()["dryRun"] is True
    assert provider.calls[-1][0] == "delete_account"


def test_link_account_dry_run_cleans_up_when_deploy_is_rejected(client, provider):
    provider.raise_on["deploy_account"] = ProviderRequestError(
        message="Failed to deploy account acc-1",
        response=ProviderResponse(method="POST", url="https://prov.test", status_code=500, body="deploy exploded"),
        category="retryable",
    )
    resp = client.post("/api/link-account", json={**LINK_BODY, "dryRun": True})
    assert resp.status_code == 400
    assert "deploy exploded" in resp.json()["error"]
    names = [name for name, _ in provider.calls]
    assert names == ["create_account", "deploy_account", "delete_account"]
    assert provider.calls[-1] == ("delete_account", {"account_id": "acc-1"})


def test_link_account_keeps_account_when_deploy_is_rejected_without_dry_run(client, provider):
    provider.raise_on["deploy_account"] = ProviderRequestError(
        message="Failed to deploy account acc-1",
        response=ProviderResponse(method="POST", url="https://prov.test", status_code=500, body="deploy exploded"),
        category="retryable",
    )
    resp = client.post("/api/link-account", json=LINK_BODY)
    assert resp.status_code == 400
    assert "delete_account" not in [name for name, _ in provider.calls]


def test_wait_connected_endpoint(client, provider):
    resp = client.post("/api/wait-connected", json={"accountId": "acc-1", "maxWait": 1, "pollInterval": 0.01})
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["outcome"]["kind"] == "connected"
    assert body["outcome"]["polls"] == 1


def test_wait_connected_endpoint_reports_failure(client, provider):
    provider.snapshots = [snapshot("DEPLOYING", "DISCONNECTED", error_code="E_AUTH")]
    resp = client.post("/api/wait-connected", json={"accountId": "acc-1"})
    assert resp.status_code == 400
    assert resp.json()["outcome"]["errorCode"] == "E_AUTH"


def test_wait_connected_rejects_non_positive_interval(client):
    resp = client.post("/api/wait-connected", json={"accountId": "acc-1", "pollInterval": 0})
    assert resp.status_code == 400
    assert resp.json()["ok"] is False


def test_account_metrics(client, provider):
    resp = client.get("/api/account-metrics", params={"id": "acc-1"})
    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "info": {"balance": 1000.0, "equity": 1010.5, "currency": "USD"},
        "counts": {"positions": 2, "orders": 1},
    }


def test_account_metrics_requires_id(client):
    resp = client.get("/api/account-metrics")
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "Missing id"}


def test_account_metrics_rejects_undeployed_account(client, provider):
    provider.snapshots = [snapshot("UNDEPLOYED", "DISCONNECTED")]
    resp = client.get("/api/account-metrics", params={"id": "acc-1"})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "Account not deployed"}
    assert "account_information" not in [name for name, _ in provider.calls]


def test_create_copy_link_creates_subscriber(client, provider):
    resp = client.post("/api/create-copy-link", json={"accountId": "acc-1", "multiplier": 2})
    assert resp.status_code == 200
    assert resp.json() == {
        "ok": True,
        "subscriberId": "acc-1",
        "strategyId": "3DvG",
        "multiplier": 2.0,
        "mirrored": True,
        "created": True,
    }
    names = [name for name, _ in provider.calls]
    assert names == ["get_subscriber", "save_subscriber", "resynchronize"]
    subscription = provider.calls[1][1]["body"]["subscriptions"][0]
    assert subscription["strategyId"] == "3DvG"
    assert subscription["tradeSizeScaling"] == {"mode": "balance", "baseBalance": 1000, "targetBalance": 2000.0}


def test_create_copy_link_updates_existing_without_mirroring(client, provider):
    provider.subscriber_exists = True
    resp = client.post("/api/create-copy-link", json={"accountId": "acc-1", "mirrorOpenTrades": False})
    assert resp.status_code == 200
    assert resp.json()["created"] is False
    assert resp.json()["mirrored"] is False
    assert "resynchronize" not in [name for name, _ in provider.calls]


def test_create_copy_link_requires_account_id(client):
    resp = client.post("/api/create-copy-link", json={})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": "Missing accountId"}


def test_invalid_body_type_maps_to_400(client):
    resp = client.post("/api/create-copy-link", json={"accountId": "acc-1", "multiplier": "lots"})
    assert resp.status_code == 400
    assert "multiplier" in resp.json()["error"]


class _StubRequest:
    def __init__(self, disconnected: bool) -> None:
        self.url = SimpleNamespace(path="/api/wait-connected")
        self.disconnected = disconnected
        self.checks = 0

    async def is_disconnected(self) -> bool:
        self.checks += 1
        return self.disconnected


@pytest.mark.asyncio
async def test_client_disconnect_cancels_wait_promptly():
    request = _StubRequest(disconnected=True)
    provider = FakeProvider([DEPLOYING])

    started = time.monotonic()
    async with cancel_on_disconnect(request) as cancel_event:
        outcome = await wait_until_connected(
            provider, "acc-1", max_wait=5.0, poll_interval=1.0, cancel_event=cancel_event
        )
    elapsed = time.monotonic() - started

    assert isinstance(outcome, TimedOut)
    assert outcome.cancelled is True
    assert elapsed < 1.0
    assert request.checks >= 1


@pytest.mark.asyncio
async def test_connected_client_does_not_cancel_wait():
    request = _StubRequest(disconnected=False)
    provider = FakeProvider([CONNECTED])

    async with cancel_on_disconnect(request) as cancel_event:
        outcome = await wait_until_connected(
            provider, "acc-1", max_wait=5.0, poll_interval=1.0, cancel_event=cancel_event
        )
        await asyncio.sleep(0)

    assert isinstance(outcome, Connected)
    assert cancel_event.is_set() is False
