# relaybot/transport/telegram_polling.py
"""
Telegram Bot API long-polling event source.

Alternative to webhook mode: no public URL or TLS certificate needed.

Usage:
    poller = TelegramPoller()
    bot = Dispatcher(transport=TelegramTransport(), source=poller)
    await bot.start()
    # ... on shutdown:
    await bot.stop()
"""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from relaybot.config import settings
from relaybot.transport.adapters import TelegramAdapter
from relaybot.transport.telegram_sender import (
    get_updates,
    delete_webhook,
    TelegramSendError,
)
from relaybot.infra.logging_config import get_logger, LogContext
from relaybot.infra.metrics import inc_counter

if TYPE_CHECKING:
    from relaybot.core.engine.dispatcher import Dispatcher

logger = get_logger(__name__)


class Backoff:
    """Doubling delay between failed polls, capped; a server hint wins"""

    def __init__(self, initial: float = 1, maximum: float = 30):
        self.initial = initial
        self.maximum = maximum
        self.current = initial

    def reset(self) -> None:
        self.current = self.initial

    def next_delay(self, retry_after: float | None = None) -> float:
        if retry_after is not None:
            return min(retry_after, self.maximum)
        delay = self.current
        self.current = min(self.current * 2, self.maximum)
        return delay


class TelegramPoller:
    """
    Long-polling loop feeding Telegram updates into a Dispatcher.

    The offset advances before an update is dispatched, so an update whose
    handler fails is not fetched again. Poll failures back off (see Backoff);
    dispatch failures are logged and the loop moves on.
    """

    def __init__(
        self,
        poll_timeout: int | None = None,
        *,
        token: str | None = None,
        backoff: Backoff | None = None,
    ):
        self.poll_timeout = settings.telegram_poll_timeout if poll_timeout is None else poll_timeout
        self.backoff = backoff or Backoff()
        self._token = token
        self._adapter = TelegramAdapter()
        self._dispatcher: "Dispatcher | None" = None
        self._task: asyncio.Task | None = None
        self._offset: int | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, dispatcher: "Dispatcher") -> None:
        if self.running:
            logger.warning("Telegram poller already running")
            return
        self._dispatcher = dispatcher

        # getUpdates is refused while a webhook is registered
        try:
            await delete_webhook(token=self._token)
            logger.info("Telegram webhook removed (switching to polling mode)")
        except TelegramSendError as e:
            logger.warning(f"Could not delete Telegram webhook: {e}")

        self._task = asyncio.create_task(self._poll_loop(), name="tg_poller")
        logger.info(f"Telegram poller started (timeout={self.poll_timeout}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Telegram poller stopped")

    async def _poll_loop(self) -> None:
        while True:
            try:
                updates = await get_updates(
                    offset=self._offset,
                    timeout=self.poll_timeout,
                    token=self._token,
                )
            except Exception as e:
                retry_after = e.retry_after if isinstance(e, TelegramSendError) else None
                delay = self.backoff.next_delay(retry_after)
                inc_counter("telegram_poll_errors_total")
                logger.error(
                    f"Telegram polling error: {e}, retrying in {delay}s",
                    exc_info=not isinstance(e, TelegramSendError),
                )
                await asyncio.sleep(delay)
                continue

            self.backoff.reset()
            for update in updates:
                self._offset = update.get("update_id", 0) + 1
                try:
                    await self.process_update(update)
                except Exception:
                    logger.error(f"Telegram update {self._offset - 1} dropped", exc_info=True)

    async def process_update(self, update: dict) -> None:
        """Adapt one Update and dispatch every resulting event"""
        if self._dispatcher is None:
            raise RuntimeError("TelegramPoller.process_update called before start()")

        for event in self._adapter.adapt_update(update):
            log_ctx = LogContext(
                logger,
                chat_id=event.chat_id,
                sender_id=event.sender_id,
                event_kind=event.kind.value,
            )
            inc_counter("inbound_events_total", provider="telegram", kind=event.kind.value)
            try:
                ctx = await self._dispatcher.dispatch(event)
            except Exception as exc:
                log_ctx.error(
                    f"Telegram poll dispatch failed: {exc.__class__.__name__}",
                    exc_info=True,
                )
                continue
            log_ctx.debug(f"Telegram poll dispatched: handled={ctx.handled}")
