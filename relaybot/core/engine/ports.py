# relaybot/core/engine/ports.py
from __future__ import annotations
from typing import Any, Protocol, TYPE_CHECKING

from relaybot.core.engine.domain import InboundEvent, OutboundMessage

if TYPE_CHECKING:
    from relaybot.core.engine.dispatcher import Dispatcher


# ============================================================================
# ASYNC PROTOCOLS
# ============================================================================

class AsyncSessionStore(Protocol):
    """
    Per-conversation state storage.

    ``get`` returns an empty mapping for unknown ids. Both calls must be safe
    to make once per event per id; last write wins.
    """
    async def get(self, session_id: str) -> dict[str, Any]: ...
    async def set(self, session_id: str, state: dict[str, Any]) -> None: ...
    async def clear(self, session_id: str) -> None: ...


class Transport(Protocol):
    """Outbound side of a chat platform, as seen by handlers"""

    async def send(self, chat_id: str, message: OutboundMessage) -> bool:
        """Deliver a message. Returns False on delivery failure instead of raising."""
        ...

    async def acknowledge(self, event: InboundEvent) -> None:
        """Acknowledge an action event. May raise; the dispatcher ignores failures."""
        ...

    async def kick_member(self, chat_id: str, user_id: str, reason: str) -> bool: ...
    async def ban_member(self, chat_id: str, user_id: str, reason: str) -> bool: ...
    async def delete_message(self, chat_id: str, message_id: str) -> bool: ...


class EventSource(Protocol):
    """Inbound side of a chat platform: feeds events into a dispatcher"""

    async def start(self, dispatcher: "Dispatcher") -> None: ...
    async def stop(self) -> None: ...
