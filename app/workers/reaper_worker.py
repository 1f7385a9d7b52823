from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from app.config import settings
from app.db import close_pool, get_pool
from app.logging import configure_logging
from app.services.container import build_services
from app.services.stuck_job_reaper import StuckJobReaper

logger = logging.getLogger("reaper_worker")


async def run_forever(reaper: StuckJobReaper, interval_seconds: float, stop: Optional[asyncio.Event] = None) -> None:
    stop = stop or asyncio.Event()
    logger.info("reaper_started", extra={"interval_seconds": interval_seconds})

    while not stop.is_set():
        try:
            await reaper.sweep()
        except Exception as e:
            logger.exception("reaper_loop_exception", extra={"error": str(e)})

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("reaper_stopped")


async def main() -> None:
    configure_logging()
    pool = await get_pool(settings)
    services = build_services(settings, pool=pool)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await run_forever(services.reaper, max(1.0, settings.REAPER_INTERVAL_SECONDS), stop)
    finally:
        await close_pool()


if __name__ == "__main__":
    asyncio.run(main())
