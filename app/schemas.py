from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LinkAccountRequest(CamelModel):
    broker_server: Optional[str] = None
    login: Optional[str | int] = None
    password: Optional[str] = Field(default=None, repr=False)
    dry_run: bool = False


class LinkAccountResponse(CamelModel):
    ok: bool
    account_id: Optional[str] = None
    region: Optional[str] = None
    state: Optional[str] = None
    connection_status: Optional[str] = None
    dry_run: Optional[bool] = None
    error: Optional[str] = None
    outcome: Optional[dict[str, Any]] = None


class WaitConnectedRequest(CamelModel):
    account_id: Optional[str] = None
    max_wait: Optional[float] = Field(default=None, gt=0)
    poll_interval: Optional[float] = Field(default=None, gt=0)


class WaitConnectedResponse(CamelModel):
    ok: bool
    outcome: dict[str, Any]


class AccountCounts(CamelModel):
    positions: int
    orders: int


class AccountMetricsResponse(CamelModel):
    ok: bool = True
    info: dict[str, Any]
    counts: AccountCounts


class CopyLinkRequest(CamelModel):
    account_id: Optional[str] = None
    multiplier: float = 1.0
    mirror_open_trades: bool = True


class CopyLinkResponse(CamelModel):
    ok: bool = True
    subscriber_id: str
    strategy_id: str
    multiplier: float
    mirrored: bool
    created: bool


class HealthResponse(CamelModel):
    ok: bool = True
    token_valid: bool
    region: str
    has_token: bool
