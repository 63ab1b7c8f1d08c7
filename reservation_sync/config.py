"""
Centralized configuration with environment variable overrides.

Backend endpoints, sync timings, and notification credentials are all
configurable here. Nothing is hardcoded in the store, listener, or
mutator logic; they take these values as constructor defaults.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from reservation_sync.logging_context import ReservationIdFilter

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag ("true"/"false"/"1"/"0"/"yes"/"no")."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


def _csv(env_var: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(env_var, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class BackendConfig:
    """Hosted database (REST surface) connection settings."""

    url: str = os.getenv("BACKEND_URL", "")
    api_key: str = os.getenv("BACKEND_API_KEY", "")
    table: str = os.getenv("RESERVATIONS_TABLE", "reservations")
    timeout_sec: float = _safe_float("BACKEND_TIMEOUT", "10.0")


@dataclass(frozen=True)
class SyncConfig:
    """Timings for the change feed listener and the status mutator."""

    ack_timeout_sec: float = _safe_float("FEED_ACK_TIMEOUT", "10.0")
    reconnect_delay_sec: float = _safe_float("FEED_RECONNECT_DELAY", "5.0")
    max_write_attempts: int = _safe_int("MAX_WRITE_ATTEMPTS", "3")
    retry_backoff_sec: float = _safe_float("WRITE_RETRY_BACKOFF", "0.5")
    verify_delay_sec: float = _safe_float("VERIFY_DELAY", "2.0")
    verify_after_write: bool = _safe_bool("VERIFY_AFTER_WRITE", "true")


@dataclass(frozen=True)
class NotificationConfig:
    """Outbound message endpoint (Telegram bot) settings."""

    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    telegram_chat_ids: tuple[str, ...] = _csv("TELEGRAM_CHAT_IDS")
    telegram_api_base: str = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org")
    timeout_sec: float = _safe_float("NOTIFY_TIMEOUT", "10.0")


@dataclass(frozen=True)
class SessionConfig:
    """Staff session lifetime."""

    ttl_hours: int = _safe_int("SESSION_TTL_HOURS", "24")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "reservation-dashboard")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.backend.timeout_sec <= 0:
        raise ValueError(
            f"BACKEND_TIMEOUT must be > 0, got {config.backend.timeout_sec}"
        )
    if config.sync.ack_timeout_sec <= 0:
        raise ValueError(
            f"FEED_ACK_TIMEOUT must be > 0, got {config.sync.ack_timeout_sec}"
        )
    if config.sync.reconnect_delay_sec <= 0:
        raise ValueError(
            f"FEED_RECONNECT_DELAY must be > 0, got {config.sync.reconnect_delay_sec}"
        )
    if config.sync.max_write_attempts < 1:
        raise ValueError(
            f"MAX_WRITE_ATTEMPTS must be >= 1, got {config.sync.max_write_attempts}"
        )
    if config.sync.retry_backoff_sec < 0:
        raise ValueError(
            f"WRITE_RETRY_BACKOFF must be >= 0, got {config.sync.retry_backoff_sec}"
        )
    if config.sync.verify_delay_sec < 0:
        raise ValueError(
            f"VERIFY_DELAY must be >= 0, got {config.sync.verify_delay_sec}"
        )
    if config.notifications.timeout_sec <= 0:
        raise ValueError(
            f"NOTIFY_TIMEOUT must be > 0, got {config.notifications.timeout_sec}"
        )
    if config.session.ttl_hours < 1:
        raise ValueError(
            f"SESSION_TTL_HOURS must be >= 1, got {config.session.ttl_hours}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s [%(reservation_id)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, ReservationIdFilter) for f in handler.filters):
            handler.addFilter(ReservationIdFilter())
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
