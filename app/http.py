from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Literal

import httpx

logger = logging.getLogger(__name__)

ErrorCategory = Literal["retryable", "fatal"]

_RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})
_DETAIL_LIMIT = 400


@dataclass(frozen=True)
class ProviderResponse:
    method: str
    url: str
    status_code: int | None
    body: str


class ProviderRequestError(RuntimeError):
    """A provider call failed at the transport or HTTP level.

    ``category`` sets the log severity when a poll fails. It never aborts a
    poll early: fatal errors are still retried until the deadline.
    """

    def __init__(
        self,
        *,
        message: str,
        response: ProviderResponse,
        category: ErrorCategory,
    ) -> None:
        self.response = response
        self.category = category
        super().__init__(self._build_message(message))

    @property
    def retryable(self) -> bool:
        return self.category == "retryable"

    @property
    def status_code(self) -> int | None:
        return self.response.status_code

    def _build_message(self, message: str) -> str:
        detail = self.response.body.strip()
        if len(detail) > _DETAIL_LIMIT:
            detail = f"{detail[:_DETAIL_LIMIT - 3]}..."
        return (
            f"{message} (category={self.category}, status={self.response.status_code}, "
            f"request={self.response.method} {self.response.url}, detail={detail!r})"
        )


def classify_status(status_code: int | None) -> ErrorCategory:
    if status_code is None or status_code in _RETRYABLE_STATUS:
        return "retryable"
    return "fatal"


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    error_message: str,
    json: Any = None,
    params: dict[str, Any] | None = None,
    allow_status: frozenset[int] = frozenset(),
) -> tuple[int, Any]:
    """Issue one request and decode the JSON body.

    Returns ``(status_code, payload)``; ``payload`` is ``None`` for empty
    bodies. Non-2xx responses raise ``ProviderRequestError`` unless the status
    is listed in ``allow_status``.
    """
    logger.debug("Provider request %s %s", method, url)
    try:
        response = await client.request(method, url, json=json, params=params)
    except httpx.HTTPError as exc:
        raise ProviderRequestError(
            message=error_message,
            response=ProviderResponse(method=method, url=url, status_code=None, body=str(exc) or type(exc).__name__),
            category="retryable",
        ) from exc

    if response.is_success or response.status_code in allow_status:
        if not response.content:
            return response.status_code, None
        try:
            return response.status_code, response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                message=f"{error_message}: invalid JSON in response",
                response=ProviderResponse(
                    method=method, url=url, status_code=response.status_code, body=response.text
                ),
                category="fatal",
            ) from exc

    raise ProviderRequestError(
        message=error_message,
        response=ProviderResponse(method=method, url=url, status_code=response.status_code, body=response.text),
        category=classify_status(response.status_code),
    )
