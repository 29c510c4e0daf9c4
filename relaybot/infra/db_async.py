# relaybot/infra/db_async.py
"""
Shared asyncpg pool for the PostgreSQL session backend.

The pool is process-wide: ``init_pool`` on startup (idempotent),
``db_conn()`` per operation, ``close_pool`` from the app lifespan.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool(dsn: str | None = None, min_size: int | None = None, max_size: int | None = None) -> None:
    """Create the pool; arguments left as None come from settings"""
    global _pool
    if _pool is not None:
        return

    from relaybot.config import settings

    dsn = dsn or settings.database_url
    if not dsn:
        raise RuntimeError("database_url is not configured")
    if min_size is None:
        min_size = settings.pg_pool_min
    if max_size is None:
        max_size = settings.pg_pool_max

    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=60,
        server_settings={"application_name": "relaybot"},
    )
    logger.info(f"asyncpg pool ready: min={min_size}, max={max_size}")


async def close_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()
        logger.info("asyncpg pool closed")


def pool_stats() -> dict[str, int] | None:
    """Current pool size and idle connections, or None without a pool"""
    if _pool is None:
        return None
    return {"size": _pool.get_size(), "idle": _pool.get_idle_size()}


@asynccontextmanager
async def db_conn() -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a connection for one operation.

        async with db_conn() as conn:
            row = await conn.fetchrow("SELECT ... WHERE session_id = $1", session_id)
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    async with _pool.acquire() as conn:
        yield conn
