# relaybot/infra/session_stores.py
"""
Session store selection from settings.

    store = await build_session_store()          # uses relaybot.config.settings
    store = await build_session_store(cfg)       # explicit Settings
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from relaybot.core.engine.ports import AsyncSessionStore
from relaybot.infra.logging_config import get_logger

if TYPE_CHECKING:
    from relaybot.config import Settings

logger = get_logger(__name__)


async def build_session_store(cfg: "Settings | None" = None) -> AsyncSessionStore:
    """
    Create the store named by ``cfg.session_backend``.

    The postgres backend initializes the shared asyncpg pool and makes sure
    the session table exists before returning.
    """
    if cfg is None:
        from relaybot.config import settings as cfg

    backend = cfg.session_backend

    if backend == "memory":
        from relaybot.infra.memory_session_store import MemorySessionStore
        store: AsyncSessionStore = MemorySessionStore()

    elif backend == "file":
        from relaybot.infra.file_session_store import FileSessionStore
        store = FileSessionStore(cfg.session_file_path)

    elif backend == "postgres":
        from relaybot.infra.db_async import init_pool
        from relaybot.infra.pg_session_store_async import AsyncPostgresSessionStore

        await init_pool(cfg.database_url, cfg.pg_pool_min, cfg.pg_pool_max)
        pg_store = AsyncPostgresSessionStore(cfg.session_table)
        await pg_store.ensure_schema()
        store = pg_store

    else:
        raise ValueError(f"Unknown session backend: {backend!r}")

    logger.info(f"Session store ready: backend={backend}")
    return store
