"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request

from caltrack.api.admin import router as admin_router
from caltrack.app_logging import configure_logging
from caltrack.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        if state_container.settings.auto_sync_on_startup:
            try:
                state_container.background_sync.start_once()
            except Exception:
                logger.exception("Failed to start background food sync")
        yield
        await state_container.background_sync.shutdown()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/foods/search")
    async def search_foods(
        request: Request,
        q: str = "",
        limit: int = Query(default=10, ge=1, le=100),
    ) -> dict[str, object]:
        """Search synced foods by name substring."""
        state_container: AppContainer = request.app.state.container
        foods = state_container.food_store.search_by_name(q, limit)
        return {"foods": [food.as_dict() for food in foods]}

    @app.get("/sync/status")
    async def sync_status(request: Request) -> dict[str, object]:
        """Return sync progress and stored food counts."""
        state_container: AppContainer = request.app.state.container
        return state_container.background_sync.status()

    return app
