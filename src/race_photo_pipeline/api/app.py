"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from race_photo_pipeline.api.admin import router as admin_router
from race_photo_pipeline.api.uploads import router as uploads_router
from race_photo_pipeline.app_logging import configure_logging
from race_photo_pipeline.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        stats = app.state.container.queue.stats
        if stats.running or stats.queued:
            logger.warning(
                "Shutting down with %s running and %s queued photo tasks; "
                "they will not be resumed",
                stats.running,
                stats.queued,
            )
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(uploads_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app
