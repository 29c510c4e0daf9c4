# relaybot/infra/db_resilience_async.py
"""
Retry logic for asyncpg session store operations.

Only transient failures are retried: the connection dropped, the server is
overloaded or restarting, or the transaction lost a deadlock. Anything
else (bad SQL, encoding errors) propagates on the first attempt.
"""
from __future__ import annotations
import asyncio
from functools import wraps
from typing import Callable, Iterator

import asyncpg
from relaybot.infra.logging_config import get_logger
from relaybot.infra.metrics import inc_counter

logger = get_logger(__name__)

# SQLSTATE classes/codes worth another attempt
_TRANSIENT_SQLSTATE_CLASSES = ("08",)            # connection exception
_TRANSIENT_SQLSTATES = frozenset({
    "53300",  # too_many_connections
    "57P01",  # admin_shutdown
    "57P03",  # cannot_connect_now
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
})
# Fallback for errors raised without a SQLSTATE
_TRANSIENT_MESSAGES = ("connection", "timeout", "closed", "network", "deadlock", "too many connections")


def is_transient_error(exc: BaseException) -> bool:
    """Whether a failed database call is worth retrying"""
    if isinstance(exc, (ConnectionError, asyncio.TimeoutError, asyncpg.InterfaceError)):
        return True
    if not isinstance(exc, asyncpg.PostgresError):
        return False

    sqlstate = getattr(exc, "sqlstate", None) or ""
    if sqlstate in _TRANSIENT_SQLSTATES or sqlstate.startswith(_TRANSIENT_SQLSTATE_CLASSES):
        return True

    message = str(exc).lower()
    return any(pattern in message for pattern in _TRANSIENT_MESSAGES)


def _delays(initial: float, factor: float, maximum: float) -> Iterator[float]:
    delay = initial
    while True:
        yield delay
        delay = min(delay * factor, maximum)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0
):
    """
    Retry an async function on transient database errors.

    ``max_retries`` counts retries, so the function runs at most
    ``max_retries + 1`` times.

    Example:
        @retry_on_transient_error(max_retries=3)
        async def load(session_id: str):
            async with db_conn() as conn:
                return await conn.fetchrow("SELECT ... WHERE id = $1", session_id)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delays = _delays(initial_delay, backoff_factor, max_delay)
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc):
                        raise
                    if attempt >= max_retries:
                        logger.error(f"{func.__name__}: giving up after {attempt + 1} attempts: {exc}")
                        raise

                    attempt += 1
                    delay = next(delays)
                    inc_counter("db_retries_total", operation=func.__name__)
                    logger.warning(
                        f"{func.__name__}: transient {exc.__class__.__name__} "
                        f"(retry {attempt}/{max_retries} in {delay:.2f}s): {exc}"
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
