"""
relaybot -- event dispatch and conversational state for chat bots.

    from relaybot import Dispatcher, Scene

    bot = Dispatcher(transport=..., session_store=...)

    @bot.command("start")
    async def start(ctx):
        await ctx.reply("Hello!")
"""
from relaybot.core.engine import (  # noqa: F401
    Attachment,
    Context,
    Dispatcher,
    EventKind,
    InboundEvent,
    MatchOutcome,
    OutboundMessage,
    Scene,
    SceneManager,
    Session,
    StepOutcome,
    continuation,
    logging_middleware,
)

__version__ = "0.1.0"
