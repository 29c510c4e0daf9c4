# relaybot/transport/telegram_webhook.py
"""
Telegram Bot API webhook handler.

Handles:
- POST /webhooks/telegram - inbound Updates from Telegram

Security features:
- X-Telegram-Bot-Api-Secret-Token header validation (if configured)
- 200 for every accepted Update, even when processing fails, so Telegram
  does not redeliver it
"""
from __future__ import annotations

import hmac
import time

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

from relaybot.core.engine.dispatcher import Dispatcher
from relaybot.transport.adapters import TelegramAdapter
from relaybot.infra.logging_config import get_logger, LogContext
from relaybot.infra.metrics import DispatchMetrics, inc_counter

logger = get_logger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def verify_secret_token(request: Request, secret: str | None) -> bool:
    """
    Verify the X-Telegram-Bot-Api-Secret-Token header.
    Returns True if valid or if no secret is configured.
    """
    if not secret:
        return True

    header_token = request.headers.get(SECRET_HEADER, "")
    if not header_token:
        logger.warning(f"Telegram webhook: missing {SECRET_HEADER} header")
        return False

    return hmac.compare_digest(header_token, secret)


async def telegram_webhook_handler(
    request: Request,
    bot: Dispatcher,
    *,
    secret: str | None = None,
) -> JSONResponse:
    started = time.perf_counter()

    if not verify_secret_token(request, secret):
        logger.error("Telegram webhook: secret token verification failed")
        DispatchMetrics.webhook_validation_failed("telegram")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        update = await request.json()
    except ValueError:
        update = None
    if not isinstance(update, dict):
        # Answer 200 anyway: a redelivered malformed body fails the same way
        logger.warning("Telegram webhook: malformed payload ignored")
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True, "processed": 0}, status_code=200)

    request_ctx = LogContext(logger, request_id=getattr(request.state, "request_id", None))

    processed = 0
    for event in TelegramAdapter().adapt_update(update):
        log_ctx = request_ctx.bind(
            chat_id=event.chat_id,
            sender_id=event.sender_id,
            event_kind=event.kind.value,
        )
        inc_counter("inbound_events_total", provider="telegram", kind=event.kind.value)
        try:
            ctx = await bot.dispatch(event)
            processed += 1
            log_ctx.info(
                f"Telegram webhook processed: handled={ctx.handled}, "
                f"elapsed={(time.perf_counter() - started) * 1000:.0f}ms"
            )
        except Exception as exc:
            log_ctx.error(
                f"Telegram webhook processing failed: {exc.__class__.__name__}",
                exc_info=True,
            )

    return JSONResponse({"ok": True, "processed": processed}, status_code=200)
