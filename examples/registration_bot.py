#!/usr/bin/env python3
"""
Registration Bot Example

A four-step registration scene plus the usual command / hears / action
handlers. By default a short scripted conversation is replayed through the
in-memory DevTransport; with --telegram the same bot runs against the
Telegram Bot API (long polling, TELEGRAM_BOT_TOKEN from env or .env).

Run from project root:
    python examples/registration_bot.py
    python examples/registration_bot.py --telegram
"""
from __future__ import annotations

import argparse
import asyncio
import re

from relaybot import Dispatcher, EventKind, Scene, StepOutcome, logging_middleware
from relaybot.config import settings
from relaybot.infra.logging_config import setup_logging, get_logger
from relaybot.infra.session_stores import build_session_store
from relaybot.transport.adapters import DevAdapter
from relaybot.transport.dev_transport import DevTransport

logger = get_logger("registration_bot")

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
DOC_URL = "https://www.w3.org/WAI/ER/tests/xhtml/testfiles/resources/pdf/dummy.pdf"


async def ask_first_name(ctx):
    await ctx.reply("Welcome to registration! What is your first name?")


async def ask_last_name(ctx):
    if not ctx.text:
        return StepOutcome.RETRY
    ctx.session["first_name"] = ctx.text
    await ctx.reply("What is your last name?")


async def ask_email(ctx):
    if not ctx.text:
        await ctx.reply("Please enter your last name.")
        return StepOutcome.RETRY
    ctx.session["last_name"] = ctx.text
    await ctx.reply("What is your email address?")


async def finish(ctx):
    if not ctx.text or not EMAIL_RE.search(ctx.text):
        await ctx.reply("Please enter a valid email address.")
        return StepOutcome.RETRY
    await ctx.reply(
        "Registration complete!\n"
        f"First Name: {ctx.session['first_name']}\n"
        f"Last Name: {ctx.session['last_name']}\n"
        f"Email: {ctx.text}"
    )
    await ctx.leave_scene()


def build_bot(bot: Dispatcher) -> Dispatcher:
    bot.use(logging_middleware())
    bot.register_scene(Scene("registration", [ask_first_name, ask_last_name, ask_email, finish]))

    @bot.catch
    async def on_error(exc, ctx):
        logger.error(f"Handler failed: {exc}")
        if ctx is not None:
            await ctx.reply(f"An error occurred: {exc}")

    @bot.command("register")
    @bot.hears("register")
    async def register(ctx):
        await ctx.enter_scene("registration")

    @bot.command("keyboard")
    async def keyboard(ctx):
        await ctx.reply("Choose an option:", [[
            {"text": "Yes", "payload": "YES"},
            {"text": "No", "payload": "NO"},
        ]])

    @bot.action(["YES", "NO"])
    async def answer(ctx):
        await ctx.reply("You clicked Yes!" if ctx.payload == "YES" else "You clicked No!")
        await ctx.delete_message()

    @bot.command("pdf")
    async def pdf(ctx):
        await ctx.reply_with_pdf(DOC_URL, "dummy.pdf", "Here is a PDF!")

    @bot.command("kick")
    async def kick(ctx):
        parts = ctx.text.split()
        if len(parts) < 2:
            await ctx.reply("Usage: /kick <userId>")
            return
        ok = await ctx.kick_member(parts[1], "Kicked by bot command")
        await ctx.reply(f"User {parts[1]} was kicked." if ok else f"Failed to kick user {parts[1]}.")

    @bot.hears(["hello", "hi"])
    async def hello(ctx):
        await ctx.reply("Hello! How can I assist you today?")

    @bot.hears(re.compile(r"\d{4}"))
    async def four_digits(ctx):
        await ctx.reply("Matched a 4-digit number (regex)")

    @bot.on(EventKind.NEW_MEMBER)
    async def welcome(ctx):
        await ctx.reply(f"Welcome {ctx.sender_id}!")

    return bot


async def run_dev_demo() -> None:
    transport = DevTransport()
    bot = build_bot(Dispatcher(transport=transport))
    adapter = DevAdapter()

    script = [
        ("message", "hi", None),
        ("message", "/register", None),
        ("message", "Ada", None),
        ("message", "Lovelace", None),
        ("message", "not-an-email", None),
        ("message", "ada@example.com", None),
        ("message", "/keyboard", None),
        ("action", None, "YES"),
        ("message", "order 2024 please", None),
    ]
    for kind, text, payload in script:
        event = adapter.adapt(sender_id="demo_user", kind=kind, text=text, payload=payload)
        ctx = await bot.dispatch(event)
        print(f"> {text or payload!r:24} handled={ctx.handled} session={ctx.session.to_mapping()}")
        for sent in transport.drain():
            print(f"    < {sent.message.text}")


async def run_telegram() -> None:
    from relaybot.transport.telegram_polling import TelegramPoller
    from relaybot.transport.telegram_sender import TelegramTransport
    from relaybot.infra.http_client import close_all_sessions

    if not settings.telegram_enabled:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set")

    bot = build_bot(Dispatcher(
        transport=TelegramTransport(),
        session_store=await build_session_store(settings),
        serialize_per_sender=settings.serialize_per_sender,
    ))
    await bot.start(TelegramPoller())
    try:
        await asyncio.Event().wait()
    finally:
        await bot.stop()
        await close_all_sessions()


def main() -> None:
    parser = argparse.ArgumentParser(description="relaybot registration example")
    parser.add_argument("--telegram", action="store_true", help="run against the Telegram Bot API")
    args = parser.parse_args()

    setup_logging(level=settings.log_level, use_json=settings.log_json)
    try:
        asyncio.run(run_telegram() if args.telegram else run_dev_demo())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
