from __future__ import annotations

from contextlib import asynccontextmanager
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from app.api import accounts, copy_links, health
from app.api.utils import register_exception_handlers
from app.config import Settings
from app.logging_config import configure_logging
from app.provider import Provider
from app.services import health as health_service

logger = logging.getLogger(__name__)


def create_app(*, settings: Settings | None = None, provider: Provider | None = None) -> FastAPI:
    """Build the API; ``provider`` is created from ``settings`` unless injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or Settings.from_env()
        owned = provider is None
        active = Provider.from_settings(resolved) if owned else provider
        app.state.settings = resolved
        app.state.provider = active
        logger.info("Starting MetaLink (region=%s, strategy=%s)", resolved.region, resolved.strategy_id)
        if owned:
            await health_service.log_token_status(active, settings=resolved)
        try:
            yield
        finally:
            if owned:
                await active.aclose()

    app = FastAPI(
        title="MetaLink",
        description="Proxy for MetaApi account provisioning and CopyFactory trade copying",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/", include_in_schema=False)
    def root() -> RedirectResponse:
        """Redirect root URL to Swagger UI docs."""
        return RedirectResponse(url="/docs")

    app.include_router(health.router)
    app.include_router(accounts.router)
    app.include_router(copy_links.router)

    register_exception_handlers(app)
    return app


app = create_app()


def run(*, host: str = "0.0.0.0", port: int | None = None, reload: bool = False) -> None:
    settings = Settings.from_env()
    configure_logging(level=settings.log_level)
    uvicorn.run("app.main:app", host=host, port=port or settings.port, log_level="info", reload=reload)


if __name__ == "__main__":
    run(reload=True)
