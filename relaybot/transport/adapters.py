import uuid
from typing import Any

from relaybot.core.engine.domain import EventKind, InboundEvent
from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)


def _reaction_key(reaction: dict) -> str | None:
    if reaction.get("type") == "emoji":
        return reaction.get("emoji")
    if reaction.get("type") == "custom_emoji":
        return f"custom:{reaction.get('custom_emoji_id')}"
    return None


class DevAdapter:
    """
    Adapter for development/testing endpoints.
    Accepts simple parameters and converts to InboundEvent.
    """

    def adapt(
            self,
            sender_id: str,
            kind: EventKind | str = EventKind.MESSAGE,
            text: str | None = None,
            payload: str | None = None,
            chat_id: str | None = None,
            message_id: str | None = None,
    ) -> InboundEvent:
        event_kind = EventKind(kind)

        if not message_id:
            message_id = f"dev_{uuid.uuid4().hex[:16]}"

        interaction_id = f"dev_ack_{uuid.uuid4().hex[:12]}" if event_kind is EventKind.ACTION else None

        logger.info(
            f"Dev event: kind={event_kind.value}, sender={sender_id[:6]}***, "
            f"has_text={bool(text)}, payload={payload!r}"
        )

        return InboundEvent(
            kind=event_kind,
            sender_id=sender_id,
            chat_id=chat_id,
            text=text,
            payload=payload,
            message_id=message_id,
            interaction_id=interaction_id,
            provider="dev",
        )


class TelegramAdapter:
    """
    Adapter for Telegram Bot API Updates.

    Update kinds understood:
      message           → MESSAGE (or NEW_MEMBER / REMOVE_MEMBER for service messages)
      callback_query    → ACTION (payload = callback data)
      message_reaction  → MESSAGE_REACTION_ADD / MESSAGE_REACTION_REMOVE (diff of old vs new)

    Everything else (edited messages, channel posts, ...) is ignored.
    Messages sent by bots are ignored.
    """

    def adapt_update(self, update: dict) -> list[InboundEvent]:
        """Convert a Telegram Update dict to a list of InboundEvents."""
        if "message" in update:
            return self._parse_message(update["message"])
        if "callback_query" in update:
            return self._parse_callback_query(update["callback_query"])
        if "message_reaction" in update:
            return self._parse_reaction(update["message_reaction"])

        logger.debug(f"Telegram update ignored (keys={list(update.keys())})")
        return []

    def _parse_message(self, message: dict) -> list[InboundEvent]:
        chat_id = str(message.get("chat", {}).get("id", ""))
        if not chat_id:
            logger.warning("Telegram message: missing chat.id, ignoring")
            return []
        message_id = str(message.get("message_id", ""))

        if "new_chat_members" in message:
            return [
                self._member_event(EventKind.NEW_MEMBER, member, chat_id, message_id, message)
                for member in message["new_chat_members"]
                if member.get("id") is not None
            ]
        if "left_chat_member" in message:
            member = message["left_chat_member"]
            if member.get("id") is None:
                return []
            return [self._member_event(EventKind.REMOVE_MEMBER, member, chat_id, message_id, message)]

        sender = message.get("from") or {}
        if sender.get("is_bot"):
            return []
        sender_id = str(sender.get("id") or chat_id)

        text = message.get("text") or message.get("caption")

        # Strip bot mention suffix from commands: "/start@MyBot arg" → "/start arg"
        if text and text[0] in ("/", "!"):
            parts = text.split(" ", 1)
            parts[0] = parts[0].split("@", 1)[0]
            text = " ".join(parts)

        return [InboundEvent(
            kind=EventKind.MESSAGE,
            sender_id=sender_id,
            chat_id=chat_id,
            text=text,
            message_id=message_id,
            provider="telegram",
            raw=message,
        )]

    @staticmethod
    def _member_event(
        kind: EventKind,
        member: dict,
        chat_id: str,
        message_id: str,
        message: dict,
    ) -> InboundEvent:
        return InboundEvent(
            kind=kind,
            sender_id=str(member["id"]),
            chat_id=chat_id,
            message_id=message_id,
            provider="telegram",
            raw=message,
        )

    def _parse_callback_query(self, query: dict) -> list[InboundEvent]:
        sender = query.get("from") or {}
        if sender.get("id") is None:
            logger.warning("Telegram callback_query: missing from.id, ignoring")
            return []

        message = query.get("message") or {}
        chat = message.get("chat") or {}
        sender_id = str(sender["id"])

        return [InboundEvent(
            kind=EventKind.ACTION,
            sender_id=sender_id,
            chat_id=str(chat["id"]) if chat.get("id") is not None else sender_id,
            payload=query.get("data"),
            message_id=str(message["message_id"]) if message.get("message_id") is not None else None,
            interaction_id=str(query.get("id")),
            provider="telegram",
            raw=query,
        )]

    def _parse_reaction(self, reaction: dict) -> list[InboundEvent]:
        actor: dict[str, Any] = reaction.get("user") or reaction.get("actor_chat") or {}
        chat_id = str(reaction.get("chat", {}).get("id", ""))
        if actor.get("id") is None or not chat_id:
            return []

        old = {_reaction_key(r) for r in reaction.get("old_reaction", [])} - {None}
        new = {_reaction_key(r) for r in reaction.get("new_reaction", [])} - {None}
        message_id = str(reaction.get("message_id", ""))

        events = []
        for kind, emojis in (
            (EventKind.MESSAGE_REACTION_ADD, new - old),
            (EventKind.MESSAGE_REACTION_REMOVE, old - new),
        ):
            for emoji in sorted(emojis):
                events.append(InboundEvent(
                    kind=kind,
                    sender_id=str(actor["id"]),
                    chat_id=chat_id,
                    text=emoji,
                    message_id=message_id,
                    provider="telegram",
                    raw=reaction,
                ))
        return events
