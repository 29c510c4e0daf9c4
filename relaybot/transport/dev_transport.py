# relaybot/transport/dev_transport.py
"""
In-memory transport for local development and tests.

Every outbound call is recorded instead of delivered:

    transport = DevTransport()
    bot = Dispatcher(transport=transport)
    ...
    assert transport.texts_to("42") == ["Hello!"]
"""
from __future__ import annotations

from dataclasses import dataclass, field

from relaybot.core.engine.domain import InboundEvent, OutboundMessage
from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class SentMessage:
    chat_id: str
    message: OutboundMessage


@dataclass
class ModerationCall:
    action: str  # "kick" | "ban"
    chat_id: str
    user_id: str
    reason: str


@dataclass
class DevTransport:
    fail_send: bool = False
    fail_acknowledge: bool = False
    fail_moderation: bool = False

    sent: list[SentMessage] = field(default_factory=list)
    acknowledged: list[str] = field(default_factory=list)
    moderation: list[ModerationCall] = field(default_factory=list)
    deleted: list[tuple[str, str]] = field(default_factory=list)

    provider = "dev"

    async def send(self, chat_id: str, message: OutboundMessage) -> bool:
        if self.fail_send:
            logger.warning(f"DevTransport: simulated send failure to {chat_id}")
            return False
        self.sent.append(SentMessage(chat_id, message))
        logger.info(f"[dev] -> {chat_id}: {message.text!r} (attachments={len(message.attachments)})")
        return True

    async def acknowledge(self, event: InboundEvent) -> None:
        if self.fail_acknowledge:
            raise RuntimeError("Interaction already acknowledged")
        self.acknowledged.append(event.interaction_id or event.payload or "")

    async def kick_member(self, chat_id: str, user_id: str, reason: str) -> bool:
        if self.fail_moderation:
            return False
        self.moderation.append(ModerationCall("kick", chat_id, user_id, reason))
        return True

    async def ban_member(self, chat_id: str, user_id: str, reason: str) -> bool:
        if self.fail_moderation:
            return False
        self.moderation.append(ModerationCall("ban", chat_id, user_id, reason))
        return True

    async def delete_message(self, chat_id: str, message_id: str) -> bool:
        self.deleted.append((chat_id, message_id))
        return True

    def texts_to(self, chat_id: str) -> list[str]:
        return [m.message.text for m in self.sent if m.chat_id == chat_id]

    def drain(self) -> list[SentMessage]:
        """Return and forget everything sent so far"""
        sent, self.sent = self.sent, []
        return sent
