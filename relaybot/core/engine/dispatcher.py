# relaybot/core/engine/dispatcher.py
"""
Dispatcher: the per-event entry point of the engine.

Per message / action event:

    load session -> middleware -> scene intercept -> command | hears | action
    registry -> persist session

Lifecycle events (member joins/leaves, reactions) skip the session and go
straight to their listeners.

Handler, middleware and scene-step errors are reported to the global error
handler (or logged when none is set) and never reach the transport.
Session store errors are logged and re-raised: the event could not be
processed.
"""
from __future__ import annotations

import asyncio
import weakref
from typing import Any, Awaitable, Callable, Optional, Union

from relaybot.core.engine.callbacks import invoke
from relaybot.core.engine.context import Context
from relaybot.core.engine.domain import (
    LIFECYCLE_KINDS,
    EventKind,
    InboundEvent,
    MatchOutcome,
    Session,
)
from relaybot.core.engine.errors import RelayBotError
from relaybot.core.engine.middleware import Middleware, MiddlewarePipeline
from relaybot.core.engine.patterns import PatternSpec, compile_pattern
from relaybot.core.engine.ports import AsyncSessionStore, EventSource, Transport
from relaybot.core.engine.registry import Handler, HandlerRegistry, ListenerRegistry
from relaybot.core.engine.scenes import Scene, SceneManager
from relaybot.infra.logging_config import LogContext, get_logger
from relaybot.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

ErrorHandler = Callable[[Exception, Optional[Context]], Union[Awaitable[Any], Any]]


class Dispatcher:
    def __init__(
        self,
        *,
        transport: Optional[Transport] = None,
        session_store: Optional[AsyncSessionStore] = None,
        error_handler: Optional[ErrorHandler] = None,
        source: Optional[EventSource] = None,
        serialize_per_sender: bool = True,
    ) -> None:
        self.transport = transport
        if session_store is None:
            from relaybot.infra.memory_session_store import MemorySessionStore
            session_store = MemorySessionStore()
        self.sessions: AsyncSessionStore = session_store
        self.error_handler = error_handler
        self.source = source
        self.serialize_per_sender = serialize_per_sender

        self.scenes = SceneManager()
        self.middleware = MiddlewarePipeline()
        self.commands = HandlerRegistry("command", command=True)
        self.hears_handlers = HandlerRegistry("hears")
        self.actions = HandlerRegistry("action")
        self.listeners: dict[EventKind, ListenerRegistry] = {
            kind: ListenerRegistry(kind.value) for kind in LIFECYCLE_KINDS
        }

        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def command(self, spec: PatternSpec, handler: Optional[Handler] = None):
        """Register a command handler; usable directly or as a decorator"""
        return self._register(self.commands, spec, handler)

    def hears(self, spec: PatternSpec, handler: Optional[Handler] = None):
        """Register a free-text handler; usable directly or as a decorator"""
        return self._register(self.hears_handlers, spec, handler)

    def action(self, spec: PatternSpec, handler: Optional[Handler] = None):
        """Register a button/interaction handler; usable directly or as a decorator"""
        return self._register(self.actions, spec, handler)

    def on(self, kind: Union[EventKind, str], handler: Optional[Handler] = None):
        """Register a lifecycle listener (new_member, remove_member, reactions)"""
        event_kind = EventKind(kind)
        if event_kind not in LIFECYCLE_KINDS:
            raise ValueError(
                f"on() accepts lifecycle events only, got '{event_kind.value}'; "
                "use command(), hears() or action() for routed events"
            )
        registry = self.listeners[event_kind]

        def decorator(fn: Handler) -> Handler:
            registry.add(fn)
            return fn

        if handler is None:
            return decorator
        return decorator(handler)

    def use(self, middleware: Middleware) -> Middleware:
        """Append a middleware stage"""
        return self.middleware.add(middleware)

    def register_scene(self, scene: Scene) -> Scene:
        return self.scenes.register(scene)

    def catch(self, handler: ErrorHandler) -> ErrorHandler:
        """Set the global error handler: ``(error, ctx)``"""
        self.error_handler = handler
        return handler

    set_error_handler = catch

    @staticmethod
    def _register(registry: HandlerRegistry, spec: PatternSpec, handler: Optional[Handler]):
        # Compile now so a bad spec fails at registration, in both call forms
        pattern = compile_pattern(spec)

        def decorator(fn: Handler) -> Handler:
            registry.add(pattern, fn)
            return fn

        if handler is None:
            return decorator
        return decorator(handler)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self, source: Optional[EventSource] = None) -> None:
        """Start feeding events from the attached (or given) event source"""
        if source is not None:
            self.source = source
        if self.source is None:
            raise RelayBotError("No event source attached; pass one to start() or the constructor")
        logger.info(
            "Dispatcher starting: commands=%d, hears=%d, actions=%d, scenes=%d, middleware=%d",
            len(self.commands), len(self.hears_handlers), len(self.actions),
            len(self.scenes), len(self.middleware),
        )
        await self.source.start(self)

    async def stop(self) -> None:
        if self.source is not None:
            await self.source.stop()

    # ========================================================================
    # DISPATCH
    # ========================================================================

    async def dispatch(self, event: InboundEvent) -> Context:
        """
        Process one inbound event start to finish.

        Returns the Context of the cycle (useful for transports and tests).
        """
        kind = event.kind.value
        DispatchMetrics.event_received(kind)

        with DispatchMetrics.track_dispatch(kind):
            if event.kind in LIFECYCLE_KINDS:
                ctx = await self._dispatch_lifecycle(event)
            elif self.serialize_per_sender:
                async with self._lock_for(event.sender_id):
                    ctx = await self._dispatch_stateful(event)
            else:
                ctx = await self._dispatch_stateful(event)

        if ctx.handled:
            DispatchMetrics.event_handled(kind)
        return ctx

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _dispatch_stateful(self, event: InboundEvent) -> Context:
        if event.kind is not EventKind.ACTION:
            return await self._run_cycle(event, self._route_message)
        # Acknowledged exactly once, even when the session store fails
        try:
            return await self._run_cycle(event, self._route_action)
        finally:
            await self._acknowledge(event)

    async def _run_cycle(self, event: InboundEvent, route) -> Context:
        session = await self._load_session(event.sender_id)
        ctx = Context(self, event, session)
        await route(ctx)
        await self._save_session(ctx)
        return ctx

    async def _dispatch_lifecycle(self, event: InboundEvent) -> Context:
        ctx = Context(self, event)
        outcome = await self.listeners[event.kind].dispatch(ctx, self._report_error)
        if outcome is MatchOutcome.STOP:
            ctx.handled = True
        return ctx

    async def _route_message(self, ctx: Context) -> None:
        if await self.middleware.run(ctx, self._report_error) is MatchOutcome.STOP:
            ctx.handled = True
            return

        if await self._intercept_scene(ctx) is MatchOutcome.STOP:
            return

        # Exactly one registry per text event
        if ctx.inbound.is_command():
            ctx.text = ctx.text[1:]
            registry = self.commands
        else:
            registry = self.hears_handlers

        if await registry.dispatch(ctx, ctx.text, self._report_error) is MatchOutcome.STOP:
            ctx.handled = True

    async def _route_action(self, ctx: Context) -> None:
        if await self._intercept_scene(ctx) is MatchOutcome.STOP:
            return
        if await self.actions.dispatch(ctx, ctx.payload, self._report_error) is MatchOutcome.STOP:
            ctx.handled = True

    async def _intercept_scene(self, ctx: Context) -> MatchOutcome:
        scene_name = ctx.session.scene_name
        stopped_before = ctx.scene_stopped
        try:
            outcome = await self.scenes.intercept(ctx)
        except Exception as exc:
            await self._report_error(exc, ctx)
            ctx.handled = True
            return MatchOutcome.STOP

        # A step that left the scene still ran, even though routing continues
        if scene_name and (outcome is MatchOutcome.STOP or (ctx.scene_stopped and not stopped_before)):
            DispatchMetrics.scene_step(scene_name)
        return outcome

    async def _acknowledge(self, event: InboundEvent) -> None:
        if self.transport is None:
            return
        try:
            await invoke(self.transport.acknowledge, event)
        except Exception:
            # Best effort: the platform may have acknowledged already
            DispatchMetrics.acknowledge_failed(event.provider)
            logger.debug("Acknowledge failed (ignored): sender=%s", event.sender_id, exc_info=True)

    # ========================================================================
    # ERRORS
    # ========================================================================

    async def _report_error(self, exc: Exception, ctx: Optional[Context]) -> None:
        kind = ctx.kind.value if ctx is not None else "unknown"
        DispatchMetrics.handler_error(kind)

        if self.error_handler is None:
            LogContext(
                logger,
                chat_id=ctx.chat_id if ctx else None,
                sender_id=ctx.sender_id if ctx else None,
                event_kind=kind,
            ).error(
                f"Unhandled {exc.__class__.__name__} while dispatching {kind} event: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return

        try:
            await invoke(self.error_handler, exc, ctx)
        except Exception:
            logger.error("Global error handler failed", exc_info=True)

    # ========================================================================
    # SESSION PERSISTENCE
    # ========================================================================

    async def _load_session(self, session_id: str) -> Session:
        try:
            raw = await self.sessions.get(session_id)
        except Exception:
            logger.error(f"Failed to load session: id={session_id[:6]}***", exc_info=True)
            DispatchMetrics.session_store_error("get")
            raise
        return Session.from_mapping(raw)

    async def _save_session(self, ctx: Context) -> None:
        try:
            await self.sessions.set(ctx.sender_id, ctx.session.to_mapping())
        except Exception:
            logger.error(f"Failed to persist session: id={ctx.sender_id[:6]}***", exc_info=True)
            DispatchMetrics.session_store_error("set")
            raise
