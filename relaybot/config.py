# relaybot/config.py
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal

from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    # Session storage
    # "memory"   - process-local dict (lost on restart)
    # "file"     - single JSON file (one dispatching process only)
    # "postgres" - one JSONB row per session (asyncpg)
    session_backend: Literal["memory", "file", "postgres"] = "memory"
    session_file_path: str = "sessions.json"
    session_ttl_seconds: int = Field(default=0, ge=0)  # POST /admin/cleanup drops postgres sessions idle longer; 0 disables

    # Database (postgres backend only)
    database_url: str | None = None
    pg_pool_min: int = Field(default=2, ge=1)
    pg_pool_max: int = Field(default=10, ge=1)
    session_table: str = Field(default="bot_sessions", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")

    # Dispatch
    serialize_per_sender: bool = True  # One event at a time per session key

    # Telegram
    telegram_bot_token: str | None = None  # Bot token from @BotFather
    telegram_mode: Literal["polling", "webhook"] = "polling"
    telegram_poll_timeout: int = Field(default=30, ge=0, le=50)
    telegram_webhook_url: str | None = None  # Public URL registered via setWebhook (webhook mode)
    telegram_webhook_secret: str | None = None  # Secret token for webhook validation (X-Telegram-Bot-Api-Secret-Token)

    # HTTP surface
    enable_dev_endpoints: bool = False  # POST /dev/events (never in prod)
    enable_request_logging: bool = True
    admin_token: str | None = None  # Bearer token for /admin endpoints (503 while unset)

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("telegram_webhook_url")
    @classmethod
    def webhook_url_must_be_https(cls, v: str | None) -> str | None:
        if v and not v.startswith("https://"):
            raise ValueError("telegram_webhook_url must use https (Telegram rejects plain http)")
        return v

    @model_validator(mode="after")
    def pool_bounds_ordered(self) -> "Settings":
        if self.pg_pool_min > self.pg_pool_max:
            raise ValueError("pg_pool_min must not exceed pg_pool_max")
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields: list[tuple[str, object]] = [
            ("telegram_bot_token", self.telegram_bot_token),
        ]
        if self.session_backend == "postgres":
            required_fields.append(("database_url", self.database_url))
        if self.telegram_mode == "webhook":
            required_fields.extend([
                ("telegram_webhook_url", self.telegram_webhook_url),
                ("telegram_webhook_secret", self.telegram_webhook_secret),
            ])

        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.session_backend == "memory" and s.app_env != "dev":
        warnings.append(f"{s.app_env}: session_backend=memory (sessions are lost on restart).")

    if s.session_backend == "postgres" and not s.database_url:
        warnings.append("session_backend=postgres but database_url is missing.")

    if s.session_backend == "file" and s.app_env == "prod":
        warnings.append("prod: session_backend=file supports a single dispatching process only.")

    if s.telegram_mode == "webhook" and not s.telegram_webhook_secret:
        warnings.append("telegram_mode=webhook but telegram_webhook_secret is not set (webhook is unauthenticated).")

    if s.enable_dev_endpoints and s.is_production:
        warnings.append("prod: enable_dev_endpoints=True is ignored; /dev/events stays disabled.")

    if s.session_ttl_seconds and s.session_backend != "postgres":
        warnings.append(f"session_ttl_seconds is ignored by session_backend={s.session_backend}.")

    if not s.serialize_per_sender:
        warnings.append("serialize_per_sender=False: concurrent events for one sender may overwrite each other's session.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        logger.warning(f"[config] {msg}")


settings = Settings()
validate_or_warn(settings)
