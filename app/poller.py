"""Wait for an external resource to reach a terminal state.

``ConditionPoller`` repeatedly fetches a snapshot and classifies it with two
predicates: success and failure. It returns exactly one of ``Connected``,
``Failed`` or ``TimedOut``; fetch errors never escape the loop. A decision is
always made on a single snapshot, never by combining fields of two polls.

Both the fetch and the pause between polls are raced against the optional
cancel event, so a cancelled wait returns without waiting on a slow provider.
"""
from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
import logging
import time
from typing import Any, Awaitable, Callable, Literal, Protocol, TypeVar, Union

import httpx
from pydantic.alias_generators import to_camel

from app.http import ProviderRequestError
from app.provider import AccountSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
Fetch = Callable[[], Awaitable[AccountSnapshot]]
Predicate = Callable[[AccountSnapshot], bool]

TRANSIENT_ERRORS = (ProviderRequestError, httpx.HTTPError)


class SnapshotSource(Protocol):
    async def get_account(self, account_id: str) -> AccountSnapshot: ...


class _OutcomePayload:
    def to_dict(self) -> dict[str, Any]:
        """Wire form: camelCase keys, ``raw`` passed through untouched."""
        return {to_camel(key): value for key, value in asdict(self).items()}


@dataclass(frozen=True)
class Connected(_OutcomePayload):
    account_id: str
    lifecycle_state: str | None
    connection_status: str | None
    polls: int
    elapsed: float
    kind: Literal["connected"] = "connected"


@dataclass(frozen=True)
class Failed(_OutcomePayload):
    account_id: str
    lifecycle_state: str | None
    connection_status: str | None
    error_code: str | None
    polls: int
    elapsed: float
    raw: dict[str, Any] = field(default_factory=dict)
    kind: Literal["failed"] = "failed"


@dataclass(frozen=True)
class TimedOut(_OutcomePayload):
    account_id: str
    lifecycle_state: str | None
    connection_status: str | None
    polls: int
    elapsed: float
    last_error: str | None = None
    cancelled: bool = False
    kind: Literal["timed_out"] = "timed_out"


Outcome = Union[Connected, Failed, TimedOut]


def is_connected(snapshot: AccountSnapshot) -> bool:
    return snapshot.connected


def is_deploy_failure(snapshot: AccountSnapshot) -> bool:
    return snapshot.failed


class ConditionPoller:
    """Poll ``fetch`` until ``is_success`` or ``is_failure`` holds, or the deadline passes."""

    def __init__(
        self,
        *,
        is_success: Predicate,
        is_failure: Predicate,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._is_success = is_success
        self._is_failure = is_failure
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    async def wait(
        self,
        account_id: str,
        fetch: Fetch,
        *,
        max_wait: float,
        poll_interval: float,
        cancel_event: asyncio.Event | None = None,
    ) -> Outcome:
        if not account_id:
            raise ValueError("account_id must not be empty")
        if max_wait <= 0:
            raise ValueError(f"max_wait must be positive, got {max_wait}")
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")

        started_at = self._clock()
        deadline = started_at + max_wait
        polls = 0
        last: AccountSnapshot | None = None
        last_error: str | None = None
        cancelled = False

        while self._clock() < deadline:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

            polls += 1
            try:
                cancelled, snapshot = await self._race(fetch, cancel_event)
            except TRANSIENT_ERRORS as exc:
                last_error = str(exc)
                if isinstance(exc, ProviderRequestError) and not exc.retryable:
                    logger.error("Poll %s for account %s rejected by provider: %s", polls, account_id, exc)
                else:
                    logger.warning("Poll %s for account %s failed, will retry: %s", polls, account_id, exc)
            else:
                if cancelled:
                    break
                last, last_error = snapshot, None
                elapsed = self._clock() - started_at
                if self._is_success(snapshot):
                    logger.info("Account %s connected after %s poll(s) in %.1fs", account_id, polls, elapsed)
                    return Connected(
                        account_id=account_id,
                        lifecycle_state=snapshot.state,
                        connection_status=snapshot.connection_status,
                        polls=polls,
                        elapsed=elapsed,
                    )
                if self._is_failure(snapshot):
                    logger.warning(
                        "Account %s failed: state=%s connection=%s error_code=%s",
                        account_id,
                        snapshot.state,
                        snapshot.connection_status,
                        snapshot.error_code,
                    )
                    return Failed(
                        account_id=account_id,
                        lifecycle_state=snapshot.state,
                        connection_status=snapshot.connection_status,
                        error_code=snapshot.error_code,
                        polls=polls,
                        elapsed=elapsed,
                        raw=snapshot.raw,
                    )
                logger.debug(
                    "Account %s not ready: state=%s connection=%s",
                    account_id,
                    snapshot.state,
                    snapshot.connection_status,
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            delay = min(poll_interval, remaining)
            cancelled, _ = await self._race(lambda: self._sleep(delay), cancel_event)
            if cancelled:
                break

        elapsed = self._clock() - started_at
        if cancelled:
            logger.info("Polling for account %s cancelled after %s poll(s)", account_id, polls)
        else:
            logger.warning("Timed out waiting for account %s after %s poll(s) in %.1fs", account_id, polls, elapsed)
        return TimedOut(
            account_id=account_id,
            lifecycle_state=last.state if last else None,
            connection_status=last.connection_status if last else None,
            polls=polls,
            elapsed=elapsed,
            last_error=last_error,
            cancelled=cancelled,
        )

    @staticmethod
    async def _race(
        start: Callable[[], Awaitable[T]], cancel_event: asyncio.Event | None
    ) -> tuple[bool, T | None]:
        """Run ``start()`` unless ``cancel_event`` fires first.

        Returns ``(cancelled, result)``. The work is cancelled when the event
        wins; exceptions raised by the work propagate.
        """
        if cancel_event is None:
            return False, await start()
        if cancel_event.is_set():
            return True, None

        work = asyncio.ensure_future(start())
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(work, waiter, return_exceptions=True)
        if work.cancelled():
            return True, None
        return False, work.result()


async def wait_until_connected(
    source: SnapshotSource,
    account_id: str,
    *,
    max_wait: float,
    poll_interval: float,
    cancel_event: asyncio.Event | None = None,
    clock: Clock | None = None,
    sleep: Sleep | None = None,
) -> Outcome:
    """Wait until the account is deployed and connected in a single snapshot."""
    poller = ConditionPoller(is_success=is_connected, is_failure=is_deploy_failure, clock=clock, sleep=sleep)

    async def fetch() -> AccountSnapshot:
        return await source.get_account(account_id)

    return await poller.wait(
        account_id,
        fetch,
        max_wait=max_wait,
        poll_interval=poll_interval,
        cancel_event=cancel_event,
    )
