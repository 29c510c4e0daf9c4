# relaybot/core/engine/registry.py
"""
Handler registries.

``HandlerRegistry`` holds ``(pattern, handler)`` routes for one event class
(command, hears, action) and runs the first route whose pattern matches.
``ListenerRegistry`` holds pattern-less listeners for lifecycle events
(member joins, reactions) and runs all of them.

Both report handler failures through the ``on_error`` callback supplied by
the dispatcher and never let them escape.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional, TYPE_CHECKING, Union

from relaybot.core.engine.callbacks import invoke
from relaybot.core.engine.domain import MatchOutcome
from relaybot.core.engine.patterns import Pattern, PatternSpec, compile_pattern

if TYPE_CHECKING:
    from relaybot.core.engine.context import Context

Handler = Callable[["Context"], Union[Awaitable[Any], Any]]
ErrorCallback = Callable[[Exception, "Context"], Awaitable[None]]


@dataclass(frozen=True)
class Route:
    pattern: Pattern
    handler: Handler


class HandlerRegistry:
    def __init__(self, name: str, *, command: bool = False):
        self.name = name
        self.command = command
        self._routes: list[Route] = []

    def add(self, spec: PatternSpec, handler: Handler) -> Route:
        route = Route(compile_pattern(spec), handler)
        self._routes.append(route)
        return route

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def match(self, value: Optional[str]) -> Optional[Route]:
        """First route matching ``value``, in registration order"""
        for route in self._routes:
            if route.pattern.matches(value, command=self.command):
                return route
        return None

    async def dispatch(
        self,
        ctx: "Context",
        value: Optional[str],
        on_error: ErrorCallback,
    ) -> MatchOutcome:
        route = self.match(value)
        if route is None:
            return MatchOutcome.CONTINUE

        try:
            await invoke(route.handler, ctx)
        except Exception as exc:
            await on_error(exc, ctx)
        # The match is consumed whether or not the handler succeeded
        return MatchOutcome.STOP


class ListenerRegistry:
    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Handler] = []

    def add(self, handler: Handler) -> Handler:
        self._listeners.append(handler)
        return handler

    def __len__(self) -> int:
        return len(self._listeners)

    async def dispatch(self, ctx: "Context", on_error: ErrorCallback) -> MatchOutcome:
        if not self._listeners:
            return MatchOutcome.CONTINUE

        for listener in self._listeners:
            try:
                await invoke(listener, ctx)
            except Exception as exc:
                await on_error(exc, ctx)
        return MatchOutcome.STOP
