from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping

from app.services.errors import ConfigurationException

_DEFAULT_PROVISIONING_URL = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
_DEFAULT_CLIENT_URL = "https://mt-client-api-v1.{region}.agiliumtrade.ai"
_DEFAULT_COPYFACTORY_URL = "https://copyfactory-api-v1.{region}.agiliumtrade.ai"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, resolved once at startup."""

    token: str | None = None
    region: str = "london"
    strategy_id: str = "3DvG"
    provisioning_url: str = _DEFAULT_PROVISIONING_URL
    client_url: str = _DEFAULT_CLIENT_URL.format(region="london")
    copyfactory_url: str = _DEFAULT_COPYFACTORY_URL.format(region="london")
    verify_tls: bool = True
    http_timeout: float = 30.0
    link_max_wait: float = 90.0
    link_poll_interval: float = 2.5
    metrics_max_wait: float = 60.0
    port: int = 3000
    log_level: str = "INFO"

    @property
    def has_token(self) -> bool:
        return bool(self.token)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        region = _text(env, "METAAPI_REGION") or "london"
        return cls(
            token=_text(env, "METAAPI_TOKEN"),
            region=region,
            strategy_id=_text(env, "PROVIDER_STRATEGY_ID") or "3DvG",
            provisioning_url=_url(env, "METAAPI_PROVISIONING_URL", _DEFAULT_PROVISIONING_URL, region),
            client_url=_url(env, "METAAPI_CLIENT_URL", _DEFAULT_CLIENT_URL, region),
            copyfactory_url=_url(env, "METAAPI_COPYFACTORY_URL", _DEFAULT_COPYFACTORY_URL, region),
            verify_tls=_bool(env, "METAAPI_VERIFY_TLS", True),
            http_timeout=_positive_float(env, "METAAPI_HTTP_TIMEOUT_SEC", 30.0),
            link_max_wait=_positive_float(env, "LINK_MAX_WAIT_SEC", 90.0),
            link_poll_interval=_positive_float(env, "LINK_POLL_INTERVAL_SEC", 2.5),
            metrics_max_wait=_positive_float(env, "METRICS_MAX_WAIT_SEC", 60.0),
            port=_port(env, "PORT", 3000),
            log_level=(_text(env, "METALINK_LOG_LEVEL") or "INFO").upper(),
        )


def _text(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _url(env: Mapping[str, str], name: str, default: str, region: str) -> str:
    template = _text(env, name) or default
    return template.format(region=region).rstrip("/")


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = _text(env, name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationException(f"{name} must be a boolean, got {value!r}")


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = _text(env, name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ConfigurationException(f"{name} must be a number, got {value!r}") from exc
    if parsed <= 0:
        raise ConfigurationException(f"{name} must be positive, got {value!r}")
    return parsed


def _port(env: Mapping[str, str], name: str, default: int) -> int:
    value = _text(env, name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ConfigurationException(f"{name} must be an integer, got {value!r}") from exc
    if not 0 < parsed < 65536:
        raise ConfigurationException(f"{name} out of range: {parsed}")
    return parsed
