from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from syncwatch.api.routes.datasets import router as datasets_router
from syncwatch.api.routes.health import router as health_router
from syncwatch.api.routes.notifications import router as notifications_router
from syncwatch.backend.client import DatasetApiClient
from syncwatch.core.config import get_settings
from syncwatch.core.logging import configure_logging
from syncwatch.monitor.notifications import NotificationFeed
from syncwatch.monitor.service import SyncMonitor
from syncwatch.monitor.types import DatasetBackend


def create_app(backend: DatasetBackend | None = None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        client = DatasetApiClient(settings) if backend is None else None
        monitor = SyncMonitor(settings, backend or client)
        feed = NotificationFeed(settings.notification_feed_size)
        monitor.on_terminal(feed)
        app.state.monitor = monitor
        app.state.notification_feed = feed
        monitor.start()
        try:
            yield
        finally:
            await monitor.close()
            if client is not None:
                await client.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(datasets_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    return app
