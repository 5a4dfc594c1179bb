"""FastAPI application entry point."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routers import auth, bookmarks, health
from core.config import get_settings
from core.logging_config import configure_logging
from services.runtime import Runtime, build_runtime


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """
    Build the app.

    When ``runtime`` is given it is used as-is and its lifecycle is left to
    the caller; otherwise one is built from settings on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if runtime is not None:
            yield
            return
        settings = get_settings()
        configure_logging(settings.log_level)
        app.state.runtime = await build_runtime(settings)
        await app.state.runtime.start()
        try:
            yield
        finally:
            await app.state.runtime.stop()

    app = FastAPI(
        title="Bookmarks Live Sync",
        description="Bookmark manager with live updates across a user's open sessions.",
        version="0.1.0",
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(bookmarks.router)
    return app


app = create_app()
