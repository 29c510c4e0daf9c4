# tests/test_context.py
"""Tests for Context side-effect helpers (replies, moderation, scenes)"""
from pathlib import Path

import pytest
from unittest.mock import AsyncMock

from relaybot.core.engine import Context, Dispatcher, EventKind, InboundEvent, OutboundMessage
from relaybot.core.engine.errors import SceneNotFoundError, TransportNotConfiguredError
from relaybot.transport.dev_transport import DevTransport


def _ctx(transport=None, **event_fields):
    fields = {"kind": EventKind.MESSAGE, "sender_id": "1001", "chat_id": "-200", "text": "hi", "message_id": "55"}
    fields.update(event_fields)
    return Context(Dispatcher(transport=transport), InboundEvent(**fields))


class TestContextFields:
    def test_exposes_event_fields(self):
        raw = {"platform": "payload"}
        ctx = _ctx(raw=raw)
        assert ctx.text == "hi"
        assert ctx.sender_id == "1001"
        assert ctx.chat_id == "-200"
        assert ctx.message_id == "55"
        assert ctx.event is raw
        assert ctx.kind is EventKind.MESSAGE
        assert ctx.handled is False
        assert ctx.scene is None

    def test_chat_defaults_to_sender(self):
        ctx = _ctx(chat_id=None)
        assert ctx.chat_id == "1001"


class TestReplies:
    @pytest.mark.asyncio
    async def test_reply_text_goes_to_chat(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        assert await ctx.reply("hello") is True

        assert transport.texts_to("-200") == ["hello"]

    @pytest.mark.asyncio
    async def test_reply_with_buttons(self):
        transport = DevTransport()
        ctx = _ctx(transport)
        rows = [[{"text": "Yes", "payload": "YES"}]]

        await ctx.reply("Choose:", rows)

        assert transport.sent[0].message.components == rows

    @pytest.mark.asyncio
    async def test_reply_accepts_structured_payload(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        await ctx.reply({"content": "embedded", "components": ["A"]})

        message = transport.sent[0].message
        assert message.text == "embedded"
        assert message.components == ["A"]

    @pytest.mark.asyncio
    async def test_reply_does_not_mutate_callers_message(self):
        transport = DevTransport()
        ctx = _ctx(transport)
        original = OutboundMessage(text="x")

        await ctx.reply(original, ["B"])

        assert original.components is None

    @pytest.mark.asyncio
    async def test_reply_reports_send_failure(self):
        ctx = _ctx(DevTransport(fail_send=True))
        assert await ctx.reply("hello") is False

    @pytest.mark.asyncio
    async def test_reply_without_transport(self):
        ctx = _ctx(None)
        with pytest.raises(TransportNotConfiguredError):
            await ctx.reply("hello")

    @pytest.mark.asyncio
    async def test_reply_with_photo(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        await ctx.reply_with_photo("https://cdn.example.com/img/lights.jpg?size=2", "caption")

        message = transport.sent[0].message
        assert message.text == "caption"
        [attachment] = message.attachments
        assert attachment.kind == "photo"
        assert attachment.filename == "lights.jpg"

    @pytest.mark.asyncio
    async def test_reply_with_photo_from_path(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        await ctx.reply_with_photo(Path("tests/test.png"))

        assert transport.sent[0].message.attachments[0].filename == "test.png"

    @pytest.mark.asyncio
    async def test_reply_with_document(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        await ctx.reply_with_document(b"%PDF", "report.bin", "here", [["Download"]])

        message = transport.sent[0].message
        assert message.attachments[0].source == b"%PDF"
        assert message.attachments[0].filename == "report.bin"
        assert message.attachments[0].kind == "document"
        assert message.components == [["Download"]]

    @pytest.mark.asyncio
    async def test_reply_with_pdf(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        await ctx.reply_with_pdf("https://example.com/dummy.pdf")

        attachment = transport.sent[0].message.attachments[0]
        assert attachment.filename == "file.pdf"
        assert attachment.description == "PDF file"


class TestModeration:
    @pytest.mark.asyncio
    async def test_kick_and_ban(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        assert await ctx.kick_member("77", "spam") is True
        assert await ctx.ban_member(77) is True

        assert [(m.action, m.chat_id, m.user_id) for m in transport.moderation] == [
            ("kick", "-200", "77"),
            ("ban", "-200", "77"),
        ]
        assert transport.moderation[0].reason == "spam"

    @pytest.mark.asyncio
    async def test_transport_failure_returns_false(self):
        transport = AsyncMock()
        transport.kick_member.side_effect = RuntimeError("no rights")
        transport.ban_member.side_effect = RuntimeError("no rights")
        transport.delete_message.side_effect = RuntimeError("too old")
        ctx = _ctx(transport)

        assert await ctx.kick_member("77") is False
        assert await ctx.ban_member("77") is False
        assert await ctx.delete_message() is False

    @pytest.mark.asyncio
    async def test_delete_defaults_to_current_message(self):
        transport = DevTransport()
        ctx = _ctx(transport)

        assert await ctx.delete_message() is True
        assert await ctx.delete_message("99") is True

        assert transport.deleted == [("-200", "55"), ("-200", "99")]

    @pytest.mark.asyncio
    async def test_delete_without_message_id(self):
        ctx = _ctx(DevTransport(), message_id=None)
        assert await ctx.delete_message() is False


class TestSceneHelpers:
    @pytest.mark.asyncio
    async def test_enter_unknown_scene_raises(self):
        ctx = _ctx(DevTransport())
        with pytest.raises(SceneNotFoundError):
            await ctx.enter_scene("nope")

    @pytest.mark.asyncio
    async def test_leave_scene_when_idle_is_a_noop(self):
        ctx = _ctx(DevTransport())
        ctx.session["keep"] = 1
        await ctx.leave_scene()
        assert dict(ctx.session) == {"keep": 1}
