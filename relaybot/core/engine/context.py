# relaybot/core/engine/context.py
"""
Per-event context handed to middleware, handlers and scene steps.

A Context lives for exactly one dispatch cycle. Side effects go through the
dispatcher's transport; the session is persisted by the dispatcher after the
cycle completes.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, TYPE_CHECKING, Union

from relaybot.core.engine.domain import (
    Attachment,
    EventKind,
    InboundEvent,
    OutboundMessage,
    Session,
)
from relaybot.core.engine.errors import TransportNotConfiguredError
from relaybot.infra.logging_config import get_logger

if TYPE_CHECKING:
    from relaybot.core.engine.dispatcher import Dispatcher
    from relaybot.core.engine.ports import Transport
    from relaybot.core.engine.scenes import Scene

logger = get_logger(__name__)

MediaSource = Union[str, bytes, Path]


def _filename_from_source(source: MediaSource, default: str) -> str:
    if isinstance(source, Path):
        return source.name or default
    if isinstance(source, str) and source.startswith(("http://", "https://")):
        tail = source.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]
        return tail or default
    return default


class Context:
    def __init__(
        self,
        bot: "Dispatcher",
        event: InboundEvent,
        session: Optional[Session] = None,
    ):
        self.bot = bot
        self.inbound = event
        self.event = event.raw
        self.kind: EventKind = event.kind
        self.text: Optional[str] = event.text
        self.payload: Optional[str] = event.payload
        self.sender_id: str = event.sender_id
        self.chat_id: str = event.chat_id or event.sender_id
        self.message_id: Optional[str] = event.message_id
        self.session: Session = session if session is not None else Session()
        self.scene: Optional["Scene"] = None
        self.handled = False
        # Set by Scene.leave: keeps the scene stage from re-entering this cycle
        self.scene_stopped = False

    def __repr__(self) -> str:
        return (
            f"Context(kind={self.kind.value}, sender_id={self.sender_id!r}, "
            f"text={self.text!r}, payload={self.payload!r}, handled={self.handled})"
        )

    @property
    def has_text(self) -> bool:
        return bool(self.text)

    # -- scenes --------------------------------------------------------------

    async def enter_scene(self, name: str) -> None:
        await self.bot.scenes.enter(name, self)

    async def leave_scene(self) -> None:
        if self.scene is not None:
            await self.scene.leave(self)
            return
        scene = self.bot.scenes.active_scene(self)
        if scene is not None:
            await scene.leave(self)

    # -- replies -------------------------------------------------------------

    def _transport(self) -> "Transport":
        transport = self.bot.transport
        if transport is None:
            raise TransportNotConfiguredError("Dispatcher has no transport attached")
        return transport

    async def reply(self, text_or_message: Any, buttons: Any = None) -> bool:
        message = OutboundMessage.coerce(text_or_message)
        if buttons:
            message.components = list(buttons) if isinstance(buttons, (list, tuple)) else [buttons]
        return await self._transport().send(self.chat_id, message)

    async def reply_with_photo(
        self,
        source: MediaSource,
        caption: str = "",
        buttons: Any = None,
    ) -> bool:
        attachment = Attachment(
            source=source,
            filename=_filename_from_source(source, "photo.jpg"),
            kind="photo",
        )
        return await self.reply(OutboundMessage(text=caption, attachments=[attachment]), buttons)

    async def reply_with_document(
        self,
        source: MediaSource,
        filename: str = "file",
        caption: str = "",
        buttons: Any = None,
    ) -> bool:
        attachment = Attachment(source=source, filename=filename, kind="document")
        return await self.reply(OutboundMessage(text=caption, attachments=[attachment]), buttons)

    async def reply_with_pdf(
        self,
        source: MediaSource,
        filename: str = "file.pdf",
        caption: str = "",
        buttons: Any = None,
    ) -> bool:
        attachment = Attachment(
            source=source,
            filename=filename,
            kind="document",
            description="PDF file",
        )
        return await self.reply(OutboundMessage(text=caption, attachments=[attachment]), buttons)

    # -- moderation ----------------------------------------------------------

    async def kick_member(self, user_id: str, reason: str = "Kicked by bot") -> bool:
        try:
            return bool(await self._transport().kick_member(self.chat_id, str(user_id), reason))
        except TransportNotConfiguredError:
            raise
        except Exception:
            logger.warning("kick_member failed: chat=%s, user=%s", self.chat_id, user_id, exc_info=True)
            return False

    async def ban_member(self, user_id: str, reason: str = "Banned by bot") -> bool:
        try:
            return bool(await self._transport().ban_member(self.chat_id, str(user_id), reason))
        except TransportNotConfiguredError:
            raise
        except Exception:
            logger.warning("ban_member failed: chat=%s, user=%s", self.chat_id, user_id, exc_info=True)
            return False

    async def delete_message(self, message_id: Optional[str] = None) -> bool:
        target = message_id or self.message_id
        if not target:
            return False
        try:
            return bool(await self._transport().delete_message(self.chat_id, str(target)))
        except TransportNotConfiguredError:
            raise
        except Exception:
            logger.warning("delete_message failed: chat=%s, message=%s", self.chat_id, target, exc_info=True)
            return False
