"""FastAPI application factory"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from workfeed import __version__
from workfeed.container import Container, init_container
from workfeed.core.config import Settings, get_settings
from workfeed.core.logging import setup_logging

from .routers import auth_router, feed_router, settings_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    container: Container | None = None,
    *,
    start_polling: bool = True,
) -> FastAPI:
    """Create and configure the loopback API for the presentation layer"""
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        app.state.start_time = time.time()
        c = container or init_container(settings)
        app.state.container = c

        # Startup
        logger.info(f"Starting WorkWidget API on {settings.api_host}:{settings.api_port}")
        await c.startup()
        await c.aggregator.refresh_all()
        if start_polling:
            c.aggregator.start_polling()

        yield

        # Shutdown
        logger.info("Shutting down WorkWidget API")
        try:
            await c.close()
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    app = FastAPI(
        title="WorkWidget API",
        description="Aggregated work notifications for the menu-bar widget",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(feed_router.router)
    app.include_router(auth_router.router)
    app.include_router(settings_router.router)

    @app.get("/api/health")
    async def health_check():
        uptime = int(time.time() - getattr(app.state, "start_time", time.time()))
        return {"status": "ok", "service": "workwidget-api", "uptime": uptime}

    return app
