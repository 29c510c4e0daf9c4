# relaybot/core/engine/middleware.py
"""
Middleware pipeline run before routing on every message event.

The dispatcher calls each stage itself, in registration order:

    async def stage(ctx) -> MatchOutcome | None

Returning ``MatchOutcome.STOP`` ends the pipeline and skips routing for this
event. A stage that raises is reported and the pipeline moves on to the
next stage.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING, Union

from relaybot.core.engine.callbacks import invoke
from relaybot.core.engine.domain import MatchOutcome
from relaybot.infra.logging_config import LogContext, get_logger

if TYPE_CHECKING:
    from relaybot.core.engine.context import Context
    from relaybot.core.engine.registry import ErrorCallback

Middleware = Callable[["Context"], Union[Awaitable[Optional[MatchOutcome]], Optional[MatchOutcome]]]
NextFn = Callable[[], Awaitable[None]]


class MiddlewarePipeline:
    def __init__(self) -> None:
        self._stages: list[Middleware] = []

    def add(self, stage: Middleware) -> Middleware:
        self._stages.append(stage)
        return stage

    def __len__(self) -> int:
        return len(self._stages)

    async def run(self, ctx: "Context", on_error: "ErrorCallback") -> MatchOutcome:
        for stage in self._stages:
            try:
                result = await invoke(stage, ctx)
            except Exception as exc:
                await on_error(exc, ctx)
                continue
            if result is MatchOutcome.STOP:
                return MatchOutcome.STOP
        return MatchOutcome.CONTINUE


def continuation(fn: Callable[["Context", NextFn], Any]) -> Middleware:
    """
    Adapt a ``(ctx, next)`` style middleware to a pipeline stage.

    ``next`` is a no-op: the dispatcher moves on to the following stage
    whether or not ``fn`` awaits it, so such a middleware decorates the
    context and never stops routing.
    """
    async def _next() -> None:
        return None

    async def stage(ctx: "Context") -> MatchOutcome:
        await invoke(fn, ctx, _next)
        return MatchOutcome.CONTINUE

    stage.__name__ = getattr(fn, "__name__", "continuation")
    return stage


def logging_middleware(logger: Optional[logging.Logger] = None) -> Middleware:
    """Log every inbound message event"""
    log = logger or get_logger("relaybot.events")

    async def log_event(ctx: "Context") -> None:
        LogContext(
            log,
            chat_id=ctx.chat_id,
            sender_id=ctx.sender_id,
            event_kind=ctx.kind.value,
        ).info(
            "Inbound event: has_text=%s, in_scene=%s",
            ctx.has_text, ctx.session.in_scene(),
        )

    return log_event
