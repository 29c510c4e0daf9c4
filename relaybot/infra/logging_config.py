"""
Logging setup for relaybot.

Two output formats on stdout:

- console (dev): colored single line, conversation ids masked
- JSON (prod): one object per line, context fields as top-level keys

Conversation context travels as ``extra`` fields on the record; use
``LogContext`` to attach it once and log several lines with it:

    log_ctx = LogContext(logger, chat_id=event.chat_id, event_kind="message")
    log_ctx.info("dispatched")
    log_ctx.bind(request_id=rid).error("failed", exc_info=True)
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import IO, Any, Optional

# Record attribute -> short console label
CONTEXT_FIELDS = {
    "event_kind": "kind",
    "scene": "scene",
    "chat_id": "chat",
    "sender_id": "sender",
    "request_id": "req",
}
_MASKED_FIELDS = frozenset({"chat_id", "sender_id"})

# Marks handlers installed by setup_logging so a second call replaces only those
_HANDLER_FLAG = "_relaybot_handler"


def _mask_id(value: Any) -> str:
    value = str(value)
    if len(value) > 6:
        return value[:4] + "****" + value[-2:]
    return value


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        log_data.update(_record_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        parts = []
        for name, value in _record_context(record).items():
            shown = _mask_id(value) if name in _MASKED_FIELDS else value
            parts.append(f"{CONTEXT_FIELDS[name]}={shown}")
        context = f" [{' '.join(parts)}]" if parts else ""

        line = f"{timestamp} {level} {record.name}{context} - {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", use_json: bool = False, stream: Optional[IO[str]] = None) -> None:
    """
    Configure application logging on the root logger.

    Calling it again swaps the relaybot handler; handlers installed by
    others (test harnesses, hosting servers) are left alone.

    Args:
        level: Log level name, case-insensitive
        use_json: JSON lines instead of the console format (production)
        stream: Output stream, stdout by default
    """
    level = level.upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        if getattr(handler, _HANDLER_FLAG, False):
            root_logger.removeHandler(handler)

    output = stream or sys.stdout
    handler = logging.StreamHandler(output)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(use_color=hasattr(output, "isatty") and output.isatty()))
    setattr(handler, _HANDLER_FLAG, True)
    root_logger.addHandler(handler)

    # Per-request access lines duplicate RequestLoggingMiddleware
    for noisy in ("uvicorn.access", "aiohttp.access", "asyncpg"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext:
    """Logger wrapper that adds conversation context to every record"""

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.context = {k: v for k, v in fields.items() if k in CONTEXT_FIELDS and v is not None}

    def bind(self, **fields: Any) -> "LogContext":
        """New LogContext with extra fields merged in"""
        return LogContext(self.logger, **{**self.context, **fields})

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.pop("extra", None) or {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)
