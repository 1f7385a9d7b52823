from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import build_router
from app.api.errors import register_exception_handlers
from app.config import settings
from app.db import close_pool, get_pool
from app.logging import configure_logging
from app.services.container import Services, build_services
from app.workers.reaper_worker import run_forever as run_reaper

logger = logging.getLogger("svc-generation")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the API. Pass `services` to run against pre-wired (e.g. in-memory)
    dependencies; otherwise they are built from settings on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        svc = services
        owns_pool = False
        if svc is None:
            if settings.STORE_BACKEND == "memory":
                svc = build_services(settings)
            else:
                svc = build_services(settings, pool=await get_pool(settings))
                owns_pool = True
        app.state.services = svc

        stop = asyncio.Event()
        reaper_task = None
        if svc.settings.REAPER_INTERVAL_SECONDS > 0:
            reaper_task = asyncio.create_task(run_reaper(svc.reaper, svc.settings.REAPER_INTERVAL_SECONDS, stop))

        logger.info("service_started", extra={"owns_pool": owns_pool})
        try:
            yield
        finally:
            stop.set()
            if reaper_task is not None:
                await reaper_task
            await svc.registry.shutdown()
            if owns_pool:
                await close_pool()

    app = FastAPI(title=settings.SERVICE_NAME, version="dev", lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(build_router())

    @app.get("/")
    async def root():
        return {"service": settings.SERVICE_NAME, "status": "ok"}

    return app


app = create_app()
