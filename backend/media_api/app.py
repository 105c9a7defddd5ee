"""
Application factory for the media API.

Run with:
    uvicorn media_api.app:app --host 0.0.0.0 --port 3000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import config
from .routes_fastapi import cache_router, health_router, images_router, users_router
from .services import MediaServices, build_services

logger = logging.getLogger(__name__)


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_app(services: Optional[MediaServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-wired services (tests inject fakes); built from the
            environment when omitted
    """
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[MediaAPI] Storage service: {services.storage.base_url}")
        yield
        await services.storage.close()
        logger.info("[MediaAPI] Storage client closed")

    app = FastAPI(title="Media API", lifespan=lifespan)
    app.state.services = services

    app.include_router(users_router)
    app.include_router(images_router)
    app.include_router(cache_router)
    app.include_router(health_router)
    return app


configure_logging()
app = create_app()
