# tests/test_registry.py
"""Tests for handler and listener registries"""
import re

import pytest

from relaybot.core.engine import Context, Dispatcher, EventKind, InboundEvent, MatchOutcome
from relaybot.core.engine.registry import HandlerRegistry, ListenerRegistry


def _ctx(text=None, payload=None, kind=EventKind.MESSAGE):
    event = InboundEvent(kind=kind, sender_id="1", text=text, payload=payload)
    return Context(Dispatcher(), event)


class _Errors(list):
    async def __call__(self, exc, ctx):
        self.append(exc)


class TestHandlerRegistry:
    @pytest.mark.asyncio
    async def test_first_match_wins(self):
        calls = []
        registry = HandlerRegistry("hears")
        registry.add(re.compile(r"\d+"), lambda ctx: calls.append("A"))
        registry.add(re.compile(r"\d{4}"), lambda ctx: calls.append("B"))

        outcome = await registry.dispatch(_ctx("2024"), "2024", _Errors())

        assert outcome is MatchOutcome.STOP
        assert calls == ["A"]

    @pytest.mark.asyncio
    async def test_no_match_continues(self):
        calls = []
        registry = HandlerRegistry("hears")
        registry.add("ping", lambda ctx: calls.append("ping"))

        outcome = await registry.dispatch(_ctx("pong"), "pong", _Errors())

        assert outcome is MatchOutcome.CONTINUE
        assert calls == []

    @pytest.mark.asyncio
    async def test_command_registry_matches_in_command_mode(self):
        calls = []
        registry = HandlerRegistry("command", command=True)
        registry.add("echo", lambda ctx: calls.append(ctx.text))

        await registry.dispatch(_ctx("echo hi"), "echo hi", _Errors())

        assert calls == ["echo hi"]

    @pytest.mark.asyncio
    async def test_handler_error_is_reported_and_consumes_match(self):
        later = []
        errors = _Errors()
        registry = HandlerRegistry("hears")

        async def broken(ctx):
            raise RuntimeError("boom")

        registry.add("go", broken)
        registry.add("go", lambda ctx: later.append(1))

        outcome = await registry.dispatch(_ctx("go"), "go", errors)

        assert outcome is MatchOutcome.STOP
        assert [str(e) for e in errors] == ["boom"]
        assert later == []

    def test_match_and_len(self):
        registry = HandlerRegistry("action")
        route = registry.add(["A", "B"], lambda ctx: None)
        assert len(registry) == 1
        assert registry.match("B") is route
        assert registry.match("C") is None
        assert list(registry) == [route]

    def test_bad_spec_fails_at_registration(self):
        registry = HandlerRegistry("hears")
        with pytest.raises(TypeError):
            registry.add(123, lambda ctx: None)


class TestListenerRegistry:
    @pytest.mark.asyncio
    async def test_runs_every_listener_in_order(self):
        calls = []
        registry = ListenerRegistry("new_member")
        registry.add(lambda ctx: calls.append(1))
        registry.add(lambda ctx: calls.append(2))

        outcome = await registry.dispatch(_ctx(kind=EventKind.NEW_MEMBER), _Errors())

        assert outcome is MatchOutcome.STOP
        assert calls == [1, 2]

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_listeners(self):
        calls = []
        errors = _Errors()
        registry = ListenerRegistry("new_member")

        def broken(ctx):
            raise ValueError("bad listener")

        registry.add(broken)
        registry.add(lambda ctx: calls.append("ran"))

        await registry.dispatch(_ctx(kind=EventKind.NEW_MEMBER), errors)

        assert calls == ["ran"]
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_empty_registry_continues(self):
        registry = ListenerRegistry("remove_member")
        outcome = await registry.dispatch(_ctx(kind=EventKind.REMOVE_MEMBER), _Errors())
        assert outcome is MatchOutcome.CONTINUE
