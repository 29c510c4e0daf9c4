# relaybot/transport/http_app.py
"""
HTTP surface for a Dispatcher.

    bot = Dispatcher(transport=TelegramTransport(), session_store=store)
    app = create_app(bot, poller=TelegramPoller())

Endpoints:
1. Public: GET /health
2. Telegram: POST /webhooks/telegram (secret-token validated)
3. Internal: GET /metrics
4. Admin: POST /admin/cleanup (Bearer admin_token)
5. Dev-only: POST /dev/events (404 unless app_env=dev and enable_dev_endpoints)
"""
from __future__ import annotations

import hmac
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from relaybot import __version__
from relaybot.core.engine.dispatcher import Dispatcher
from relaybot.infra.db_async import close_pool, pool_stats
from relaybot.infra.http_client import close_all_sessions
from relaybot.infra.logging_config import setup_logging, get_logger
from relaybot.infra.metrics import get_metrics_collector
from relaybot.transport.adapters import DevAdapter
from relaybot.transport.dev_transport import DevTransport
from relaybot.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from relaybot.transport.schemas import DevEventIn, DispatchOut, SentMessageOut
from relaybot.transport.telegram_webhook import telegram_webhook_handler

if TYPE_CHECKING:
    from relaybot.config import Settings
    from relaybot.core.engine.ports import EventSource

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_bot(request: Request) -> Dispatcher:
    """Get dispatcher from app state"""
    return request.app.state.bot


def require_dev_endpoints(request: Request) -> None:
    """Dev-only endpoints answer 404 everywhere else (the endpoint stays hidden)"""
    cfg: "Settings" = request.app.state.settings
    if cfg.app_env != "dev" or not cfg.enable_dev_endpoints:
        logger.warning(
            "Attempted access to dev-only endpoint",
            extra={"env": cfg.app_env},
        )
        raise HTTPException(status_code=404, detail="Not found")


def require_admin_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Bearer admin_token; 503 while no token is configured"""
    cfg: "Settings" = request.app.state.settings
    if not cfg.admin_token:
        logger.critical("admin_token not configured but admin endpoint accessed")
        raise HTTPException(status_code=503, detail="Service unavailable")

    if credentials is None or not hmac.compare_digest(credentials.credentials.encode(), cfg.admin_token.encode()):
        logger.warning(f"Admin auth failed: {request.method} {request.url.path}")
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_app(
    bot: Dispatcher,
    *,
    poller: "EventSource | None" = None,
    app_settings: "Settings | None" = None,
) -> FastAPI:
    if app_settings is None:
        from relaybot.config import settings as app_settings

    cfg = app_settings
    setup_logging(level=cfg.log_level, use_json=cfg.log_json or cfg.is_production)

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        logger.info(f"Starting application: env={cfg.app_env}, telegram_mode={cfg.telegram_mode}")

        if poller is not None and cfg.telegram_mode == "polling":
            await bot.start(poller)
        elif cfg.telegram_mode == "webhook" and cfg.telegram_enabled and cfg.telegram_webhook_url:
            from relaybot.transport.telegram_sender import set_webhook, TelegramSendError
            try:
                await set_webhook(cfg.telegram_webhook_url, cfg.telegram_webhook_secret)
                logger.info(f"Telegram webhook registered: {cfg.telegram_webhook_url}")
            except TelegramSendError as exc:
                logger.error(f"Telegram webhook registration failed: {exc}")

        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application")
        if bot.source is not None:
            await bot.stop()
        await close_all_sessions()
        await close_pool()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="relaybot",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if cfg.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if cfg.is_production else "/openapi.json",
    )
    app.state.bot = bot
    app.state.settings = cfg

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=cfg.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    @app.get("/metrics")
    def metrics():
        collector = get_metrics_collector()
        stats = pool_stats()
        if stats is not None:
            collector.set_gauge("db_pool_size", stats["size"])
            collector.set_gauge("db_pool_idle", stats["idle"])
        return collector.get_metrics()

    @app.post("/admin/cleanup", dependencies=[Depends(require_admin_auth)], include_in_schema=False)
    async def admin_cleanup(dispatcher: Dispatcher = Depends(get_bot)):
        """Delete sessions idle for longer than session_ttl_seconds"""
        cleanup = getattr(dispatcher.sessions, "cleanup_expired", None)
        if cfg.session_ttl_seconds <= 0 or cleanup is None:
            logger.info("Session cleanup skipped: no ttl or backend without expiry")
            return {"deleted_sessions": 0, "skipped": True}

        logger.info(f"Manual cleanup triggered: ttl={cfg.session_ttl_seconds}s")
        deleted = await cleanup(cfg.session_ttl_seconds)
        return {"deleted_sessions": deleted, "skipped": False}

    @app.post("/webhooks/telegram")
    async def webhook_telegram(request: Request, dispatcher: Dispatcher = Depends(get_bot)):
        """
        Telegram webhook endpoint.

        403 on a bad secret token; 200 for everything else so Telegram
        never redelivers an Update.
        """
        return await telegram_webhook_handler(
            request, dispatcher, secret=cfg.telegram_webhook_secret,
        )

    @app.post(
        "/dev/events",
        response_model=DispatchOut,
        dependencies=[Depends(require_dev_endpoints)],
        include_in_schema=False,
    )
    async def dev_events(body: DevEventIn, dispatcher: Dispatcher = Depends(get_bot)):
        """Dispatch a hand-made event; with a DevTransport, the replies are returned"""
        event = DevAdapter().adapt(
            sender_id=body.sender_id,
            kind=body.kind,
            text=body.text,
            payload=body.payload,
            chat_id=body.chat_id,
            message_id=body.message_id,
        )

        transport = dispatcher.transport
        sent_before = len(transport.sent) if isinstance(transport, DevTransport) else 0

        ctx = await dispatcher.dispatch(event)

        replies: list[SentMessageOut] = []
        if isinstance(transport, DevTransport):
            replies = [
                SentMessageOut(
                    chat_id=item.chat_id,
                    text=item.message.text,
                    attachments=len(item.message.attachments),
                    components=item.message.components,
                )
                for item in transport.sent[sent_before:]
            ]

        return DispatchOut(
            handled=ctx.handled,
            scene=ctx.session.scene_name,
            step=ctx.session.step,
            session=dict(ctx.session),
            replies=replies,
        )

    return app
