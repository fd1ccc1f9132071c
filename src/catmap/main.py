"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from catmap.api.admin import router as admin_router
from catmap.api.cats import router as cats_router
from catmap.api.interactions import router as interactions_router
from catmap.api.leaderboard import router as leaderboard_router
from catmap.config import get_settings
from catmap.dependencies import close_services, init_services
from catmap.health.router import router as health_router
from catmap.middleware import setup_middleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_services(settings)
    logger.info("catmap_started", storage=settings.storage_backend, environment=settings.environment)

    yield

    await close_services()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Bodega Cat Map API",
        description="Cats on a map: submissions, moderation, visits, treats, comments and leaderboards",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(cats_router)
    app.include_router(interactions_router)
    app.include_router(leaderboard_router)
    app.include_router(admin_router)

    return app


app = create_app()
