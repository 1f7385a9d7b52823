from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import asyncpg

from app.config import Settings, settings

logger = logging.getLogger("svc-generation.db")

_pool: Optional[asyncpg.Pool] = None
_pool_lock: Optional[asyncio.Lock] = None


def redact_dsn(dsn: str) -> str:
    """postgresql://user:pw@host:5432/db -> postgresql://***@host:5432/db"""
    try:
        u = urlparse(dsn)
        return f"{u.scheme}://***@{u.hostname or ''}:{u.port or ''}/{(u.path or '').lstrip('/')}"
    except ValueError:
        return "<invalid-dsn>"


async def get_pool(cfg: Settings = settings) -> asyncpg.Pool:
    """Shared pool for the job, track and pipeline stores; created on first use."""
    global _pool, _pool_lock
    if _pool is not None:
        return _pool

    dsn = (cfg.DATABASE_URL or "").strip()
    if not dsn:
        raise RuntimeError("DATABASE_URL is required when STORE_BACKEND=postgres")

    if _pool_lock is None:
        _pool_lock = asyncio.Lock()
    async with _pool_lock:
        if _pool is None:
            logger.info("db_pool_open", extra={"dsn": redact_dsn(dsn), "service": cfg.SERVICE_NAME})
            _pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=cfg.DB_POOL_MIN,
                max_size=cfg.DB_POOL_MAX,
                command_timeout=cfg.DB_COMMAND_TIMEOUT,
                server_settings={"application_name": cfg.SERVICE_NAME},
            )
    return _pool


async def close_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()
        logger.info("db_pool_closed")
