# relaybot/infra/http_client.py
"""
Shared aiohttp sessions for Bot API calls.

Sessions are created lazily per profile and recreated if closed:

- **sender**: Bot API methods (sendMessage, answerCallbackQuery, ...)
- **poller**: long-poll getUpdates; the read timeout is set per request
  from the poll timeout, so the session has no total limit

``close_all_sessions()`` is called once from the app lifespan on shutdown.
"""
from __future__ import annotations

from typing import NamedTuple

import aiohttp

from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)


class _Profile(NamedTuple):
    total: float | None
    connect: float
    limit: int


PROFILES = {
    "sender": _Profile(total=25, connect=5, limit=20),
    "poller": _Profile(total=None, connect=5, limit=2),
}

_sessions: dict[str, aiohttp.ClientSession] = {}


def _session(name: str) -> aiohttp.ClientSession:
    session = _sessions.get(name)
    if session is not None and not session.closed:
        return session

    profile = PROFILES[name]
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=profile.total, connect=profile.connect),
        connector=aiohttp.TCPConnector(
            limit=profile.limit,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        ),
    )
    _sessions[name] = session
    logger.debug("HTTP session '%s' created (limit=%d)", name, profile.limit)
    return session


def get_sender_session() -> aiohttp.ClientSession:
    return _session("sender")


def get_poller_session() -> aiohttp.ClientSession:
    return _session("poller")


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
