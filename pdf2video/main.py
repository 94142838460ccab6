from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pdf2video.core.config import get_settings
from pdf2video.services_container import init_services, shutdown_services

from .api.routes import conversion, meta


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await init_services(settings=settings)
        try:
            yield
        finally:
            await shutdown_services()

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    app.include_router(meta.health_router)
    app.include_router(meta.router, prefix=settings.api_prefix)
    app.include_router(conversion.router, prefix=settings.api_prefix)

    return app


app = create_app()
