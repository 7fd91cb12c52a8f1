from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from app.config import Settings
from app.provider import Provider
from app.services.errors import (
    AccountNotDeployedException,
    ConfigurationException,
    MetaLinkException,
    ProviderException,
    ValidationException,
)

ERROR_STATUS = {
    ValidationException: 400,
    AccountNotDeployedException: 400,
    ProviderException: 400,
    ConfigurationException: 500,
}

_DISCONNECT_CHECK_INTERVAL = 0.5

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_provider(request: Request) -> Provider:
    return request.app.state.provider


@asynccontextmanager
async def cancel_on_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """Yield an event that is set once the client goes away."""
    event = asyncio.Event()

    async def watch() -> None:
        while not event.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected from %s, cancelling", request.url.path)
                event.set()
                return
            await asyncio.sleep(_DISCONNECT_CHECK_INTERVAL)

    watcher = asyncio.create_task(watch())
    try:
        yield event
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)


def _error_response(status: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status)


def _exception_handler(request: Request, exc: Exception):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.exception("Application error for path=%s: %s", request.url.path, exc)
    else:
        logger.warning("Request failed path=%s status=%s error=%s", request.url.path, status, exc)
    return _error_response(status, str(exc))


def _validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    missing = [str(err["loc"][-1]) for err in errors if err.get("type") == "missing" and err.get("loc")]
    if missing:
        message = f"Missing fields: {', '.join(missing)}"
    elif errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    logger.warning("Request validation failed path=%s error=%s", request.url.path, message)
    return _error_response(400, message)


def register_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(MetaLinkException)(_exception_handler)
    app.exception_handler(RequestValidationError)(_validation_handler)
