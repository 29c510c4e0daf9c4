from __future__ import annotations

import copy
from typing import Any

from relaybot.core.engine.ports import AsyncSessionStore


class MemorySessionStore(AsyncSessionStore):
    """
    In-process session store.

    Values are deep-copied on the way in and out so a caller mutating a
    returned mapping never changes what is stored.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, dict[str, Any]] = {}

    async def get(self, session_id: str) -> dict[str, Any]:
        return copy.deepcopy(self.sessions.get(session_id, {}))

    async def set(self, session_id: str, state: dict[str, Any]) -> None:
        self.sessions[session_id] = copy.deepcopy(dict(state))

    async def clear(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
