from __future__ import annotations
import json
import re
from typing import Any

from relaybot.core.engine.ports import AsyncSessionStore
from relaybot.infra.db_async import db_conn
from relaybot.infra.db_resilience_async import retry_on_transient_error
from relaybot.infra.metrics import DispatchMetrics
from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class AsyncPostgresSessionStore(AsyncSessionStore):
    """Async implementation of SessionStore using asyncpg (one JSONB row per session id)"""

    def __init__(self, table: str = "bot_sessions"):
        if not _TABLE_NAME_RE.match(table):
            raise ValueError(f"Invalid session table name: {table!r}")
        self.table = table

    async def ensure_schema(self) -> None:
        async with db_conn() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                  session_id text PRIMARY KEY,
                  state_json jsonb NOT NULL DEFAULT '{{}}'::jsonb,
                  updated_at timestamptz NOT NULL DEFAULT now()
                )
                """
            )
        logger.info(f"Session table ready: {self.table}")

    # get/set failures are logged and counted once, by the dispatcher
    @retry_on_transient_error(max_retries=3)
    async def get(self, session_id: str) -> dict[str, Any]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT state_json::text AS state_json FROM {self.table} WHERE session_id=$1",
                session_id,
            )
        if not row:
            return {}
        state = json.loads(row["state_json"])
        return state if isinstance(state, dict) else {}

    @retry_on_transient_error(max_retries=3)
    async def set(self, session_id: str, state: dict[str, Any]) -> None:
        async with db_conn() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self.table}(session_id, state_json)
                VALUES ($1, $2::jsonb)
                ON CONFLICT (session_id)
                DO UPDATE SET
                  state_json = EXCLUDED.state_json,
                  updated_at = now()
                """,
                session_id, json.dumps(state),
            )

    async def clear(self, session_id: str) -> None:
        try:
            async with db_conn() as conn:
                await conn.execute(
                    f"DELETE FROM {self.table} WHERE session_id=$1",
                    session_id,
                )
        except Exception:
            logger.error(f"Failed to delete session: id={session_id[:6]}***", exc_info=True)
            DispatchMetrics.session_store_error("pg_clear")
            raise

    async def cleanup_expired(self, ttl_seconds: int) -> int:
        try:
            async with db_conn() as conn:
                result = await conn.execute(
                    f"DELETE FROM {self.table} WHERE updated_at < now() - ($1 || ' seconds')::interval",
                    str(ttl_seconds),
                )
                # asyncpg execute returns "DELETE N" string
                deleted = int(result.split()[-1]) if result else 0
                if deleted > 0:
                    logger.info(f"Cleaned up {deleted} expired sessions (ttl={ttl_seconds}s)")
                return deleted
        except Exception:
            logger.error(f"Failed to cleanup expired sessions: ttl={ttl_seconds}", exc_info=True)
            DispatchMetrics.session_store_error("pg_cleanup")
            raise
