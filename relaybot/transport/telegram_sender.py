# relaybot/transport/telegram_sender.py
"""
Telegram Bot API outbound calls, plus ``TelegramTransport`` which exposes
them through the dispatcher's Transport port.

Error classification (TelegramSendError.retryable):
- Token invalid / bot blocked  → NOT retryable (needs human intervention)
- Bad request (chat not found, message too old to delete, ...) → NOT retryable
- Rate limiting (429)          → retryable
- Network / timeout            → retryable
- Unknown server error         → retryable

HTTP session lifecycle:
- Uses the shared sessions from relaybot.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiohttp

from relaybot.config import settings
from relaybot.core.engine.domain import Attachment, InboundEvent, OutboundMessage
from relaybot.infra.http_client import get_poller_session, get_sender_session
from relaybot.infra.logging_config import get_logger
from relaybot.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
CAPTION_LIMIT = 1024

# Update types the adapter understands; message_reaction is opt-in on Telegram
ALLOWED_UPDATES = ["message", "callback_query", "message_reaction"]

# HTTP status -> (metric/log label, log level, retryable); anything else is a retryable "error"
_ERROR_CLASSES = {
    400: ("bad_request", logging.WARNING, False),
    401: ("auth_error", logging.ERROR, False),
    403: ("forbidden", logging.WARNING, False),
    429: ("rate_limited", logging.WARNING, True),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _bot_url(method: str, token: str | None = None) -> str:
    """Build Telegram Bot API URL."""
    bot_token = token or settings.telegram_bot_token
    return f"{TELEGRAM_API_BASE}/bot{bot_token}/{method}"


def _mask(chat_id: str) -> str:
    return chat_id[:4] + "***" if len(chat_id) > 4 else chat_id


# ---------------------------------------------------------------------------
# Error type
# ---------------------------------------------------------------------------

class TelegramSendError(Exception):
    """Error calling the Telegram Bot API.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: Telegram-specific error code from the response body.
        retryable:  Whether the caller should schedule a retry.
        retry_after: Seconds Telegram asked us to wait (429 only).
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
        retry_after: int | None = None,
    ):
        self.status = status
        self.error_code = error_code
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def send_text_message(
    chat_id: str,
    text: str,
    *,
    reply_markup: dict | None = None,
    token: str | None = None,
) -> dict:
    """
    Send a text message.

    Raises:
        TelegramSendError: On API errors (check .retryable before scheduling retry)
    """
    payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
    if reply_markup:
        payload["reply_markup"] = reply_markup
    return await _send_request(_bot_url("sendMessage", token), payload, chat_id)


async def send_photo(
    chat_id: str,
    photo: str | bytes | Path,
    *,
    caption: str = "",
    filename: str = "photo.jpg",
    reply_markup: dict | None = None,
    token: str | None = None,
) -> dict:
    """Send a photo by URL / file_id (str) or upload it (bytes, Path)."""
    return await _send_file(
        "sendPhoto", "photo", chat_id, photo,
        caption=caption, filename=filename, reply_markup=reply_markup, token=token,
    )


async def send_document(
    chat_id: str,
    document: str | bytes | Path,
    *,
    caption: str = "",
    filename: str = "file",
    reply_markup: dict | None = None,
    token: str | None = None,
) -> dict:
    """Send a document by URL / file_id (str) or upload it (bytes, Path)."""
    return await _send_file(
        "sendDocument", "document", chat_id, document,
        caption=caption, filename=filename, reply_markup=reply_markup, token=token,
    )


async def answer_callback_query(
    callback_query_id: str,
    *,
    text: str | None = None,
    token: str | None = None,
) -> dict:
    """Acknowledge an inline-button press (stops the client-side spinner)."""
    payload: dict[str, Any] = {"callback_query_id": callback_query_id}
    if text:
        payload["text"] = text
    return await _send_request(_bot_url("answerCallbackQuery", token), payload, "callback")


async def ban_chat_member(chat_id: str, user_id: str, token: str | None = None) -> dict:
    payload = {"chat_id": chat_id, "user_id": user_id}
    return await _send_request(_bot_url("banChatMember", token), payload, chat_id)


async def unban_chat_member(
    chat_id: str,
    user_id: str,
    *,
    only_if_banned: bool = True,
    token: str | None = None,
) -> dict:
    payload = {"chat_id": chat_id, "user_id": user_id, "only_if_banned": only_if_banned}
    return await _send_request(_bot_url("unbanChatMember", token), payload, chat_id)


async def delete_message(chat_id: str, message_id: str, token: str | None = None) -> dict:
    payload = {"chat_id": chat_id, "message_id": message_id}
    return await _send_request(_bot_url("deleteMessage", token), payload, chat_id)


async def delete_webhook(token: str | None = None) -> dict:
    """Remove webhook so polling can work."""
    return await _send_request(_bot_url("deleteWebhook", token), {}, "system")


async def set_webhook(
    webhook_url: str,
    secret_token: str | None = None,
    token: str | None = None,
) -> dict:
    """
    Register the public webhook URL.

    Args:
        webhook_url: Public HTTPS URL for receiving updates
        secret_token: Echoed back in X-Telegram-Bot-Api-Secret-Token
        token: Bot token override
    """
    payload: dict[str, Any] = {"url": webhook_url, "allowed_updates": ALLOWED_UPDATES}
    if secret_token:
        payload["secret_token"] = secret_token
    return await _send_request(_bot_url("setWebhook", token), payload, "system")


async def get_updates(
    offset: int | None = None,
    timeout: int = 30,
    token: str | None = None,
) -> list[dict]:
    """
    Long-poll for updates via getUpdates.

    Returns:
        List of Update dicts
    """
    url = _bot_url("getUpdates", token)
    payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ALLOWED_UPDATES}
    if offset is not None:
        payload["offset"] = offset

    session = get_poller_session()
    try:
        async with session.post(
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout + 10, connect=5),
        ) as resp:
            body = await _safe_response_json(resp)

            if resp.status == 200 and body and body.get("ok"):
                return body.get("result", [])

            error_desc = (body or {}).get("description", "Unknown error")
            error_code = (body or {}).get("error_code")

            raise TelegramSendError(
                resp.status, error_code, error_desc,
                retryable=resp.status == 429 or resp.status >= 500,
            )

    except TelegramSendError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.error(f"Telegram getUpdates connection error: {exc}")
        raise TelegramSendError(0, None, str(exc) or exc.__class__.__name__, retryable=True)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

async def _send_file(
    method: str,
    field: str,
    chat_id: str,
    source: str | bytes | Path,
    *,
    caption: str,
    filename: str,
    reply_markup: dict | None,
    token: str | None,
) -> dict:
    url = _bot_url(method, token)

    # URL or file_id: plain JSON call
    if isinstance(source, str):
        payload: dict[str, Any] = {"chat_id": chat_id, field: source}
        if caption:
            payload["caption"] = caption
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await _send_request(url, payload, chat_id)

    if isinstance(source, Path):
        content = await asyncio.to_thread(source.read_bytes)
    else:
        content = source

    form = aiohttp.FormData()
    form.add_field("chat_id", chat_id)
    if caption:
        form.add_field("caption", caption)
    if reply_markup:
        form.add_field("reply_markup", json.dumps(reply_markup))
    form.add_field(field, content, filename=filename, content_type="application/octet-stream")
    return await _send_request(url, None, chat_id, form=form)


async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json()
    except Exception:
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None


async def _send_request(
    url: str,
    payload: dict | None,
    chat_id: str,
    *,
    form: aiohttp.FormData | None = None,
) -> dict:
    """
    Execute a Telegram Bot API request with error handling.
    """
    try:
        session = get_sender_session()
        request_kwargs: dict[str, Any] = {"data": form} if form is not None else {"json": payload}
        async with session.post(url, **request_kwargs) as resp:
            body = await _safe_response_json(resp)

            if resp.status == 200 and body and body.get("ok"):
                result = body.get("result", {})
                msg_id = result.get("message_id", "ok") if isinstance(result, dict) else "ok"
                logger.debug(f"Telegram call ok: chat={_mask(chat_id)}, result={msg_id}")
                inc_counter("telegram_outbound_sent")
                return body

            # --- Error path ------------------------------------------------
            body = body or {}
            error_desc = body.get("description", "Unknown error")
            error_code = body.get("error_code")
            status = 401 if error_code == 401 else resp.status
            label, level, retryable = _ERROR_CLASSES.get(status, ("error", logging.ERROR, True))
            retry_after = (body.get("parameters") or {}).get("retry_after") if status == 429 else None

            logger.log(
                level,
                f"Telegram API {label}: status={resp.status}, code={error_code}, msg={error_desc}"
                + (f", retry_after={retry_after}s" if retry_after is not None else ""),
            )
            inc_counter(f"telegram_outbound_{label}")
            raise TelegramSendError(
                resp.status, error_code, error_desc, retryable=retryable, retry_after=retry_after
            )

    except TelegramSendError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.error(f"Telegram API connection error: {exc}", exc_info=True)
        inc_counter("telegram_outbound_connection_error")
        raise TelegramSendError(0, None, str(exc) or exc.__class__.__name__, retryable=True)


# ---------------------------------------------------------------------------
# Transport port
# ---------------------------------------------------------------------------

def _button(descriptor: Any) -> dict:
    """Inline button from a str or a {text|label, callback_data|payload|id|url} dict"""
    if isinstance(descriptor, str):
        return {"text": descriptor, "callback_data": descriptor}
    if isinstance(descriptor, dict):
        text = descriptor.get("text") or descriptor.get("label") or ""
        if descriptor.get("url"):
            return {"text": text, "url": descriptor["url"]}
        data = descriptor.get("callback_data") or descriptor.get("payload") or descriptor.get("id") or text
        return {"text": text, "callback_data": str(data)}
    raise TypeError(f"Unsupported button descriptor: {descriptor!r}")


def build_reply_markup(components: list[Any] | None) -> dict | None:
    """
    Inline keyboard from component descriptors.

    Each component is a row (list of buttons) or a single button on its own row.
    """
    if not components:
        return None
    rows = []
    for component in components:
        if isinstance(component, (list, tuple)):
            rows.append([_button(b) for b in component])
        else:
            rows.append([_button(component)])
    return {"inline_keyboard": rows}


class TelegramTransport:
    """Transport port backed by the Telegram Bot API"""

    provider = "telegram"

    def __init__(self, token: str | None = None):
        self.token = token or settings.telegram_bot_token

    async def send(self, chat_id: str, message: OutboundMessage) -> bool:
        markup = build_reply_markup(message.components)
        text = message.text or ""
        try:
            if not message.attachments:
                await send_text_message(chat_id, text, reply_markup=markup, token=self.token)
                return True

            caption = text
            if len(caption) > CAPTION_LIMIT:
                await send_text_message(chat_id, caption, token=self.token)
                caption = ""

            last = len(message.attachments) - 1
            for index, attachment in enumerate(message.attachments):
                await self._send_attachment(
                    chat_id,
                    attachment,
                    caption=caption if index == 0 else "",
                    reply_markup=markup if index == last else None,
                )
            return True
        except TelegramSendError as exc:
            logger.error(f"Telegram send failed: chat={_mask(chat_id)}, error={exc}")
            return False

    async def _send_attachment(
        self,
        chat_id: str,
        attachment: Attachment | dict,
        *,
        caption: str,
        reply_markup: dict | None,
    ) -> dict:
        if isinstance(attachment, dict):
            attachment = Attachment(**attachment)
        sender = send_photo if attachment.kind == "photo" else send_document
        return await sender(
            chat_id,
            attachment.source,
            caption=caption,
            filename=attachment.filename,
            reply_markup=reply_markup,
            token=self.token,
        )

    async def acknowledge(self, event: InboundEvent) -> None:
        if not event.interaction_id:
            return
        await answer_callback_query(event.interaction_id, token=self.token)

    async def kick_member(self, chat_id: str, user_id: str, reason: str) -> bool:
        # Telegram has no kick: ban, then lift the ban so the user may rejoin
        try:
            await ban_chat_member(chat_id, user_id, token=self.token)
            await unban_chat_member(chat_id, user_id, only_if_banned=True, token=self.token)
        except TelegramSendError as exc:
            logger.warning(f"Telegram kick failed: chat={_mask(chat_id)}, error={exc}")
            return False
        logger.info(f"Member kicked: chat={_mask(chat_id)}, reason={reason}")
        return True

    async def ban_member(self, chat_id: str, user_id: str, reason: str) -> bool:
        try:
            await ban_chat_member(chat_id, user_id, token=self.token)
        except TelegramSendError as exc:
            logger.warning(f"Telegram ban failed: chat={_mask(chat_id)}, error={exc}")
            return False
        logger.info(f"Member banned: chat={_mask(chat_id)}, reason={reason}")
        return True

    async def delete_message(self, chat_id: str, message_id: str) -> bool:
        try:
            await delete_message(chat_id, message_id, token=self.token)
        except TelegramSendError as exc:
            logger.warning(f"Telegram delete failed: chat={_mask(chat_id)}, error={exc}")
            return False
        return True
