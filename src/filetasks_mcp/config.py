"""
Configuration for the file task MCP server.

Settings are read from environment variables once at startup.
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger("filetasks-mcp")

_TRUE_VALUES = ("1", "true", "yes", "on")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', defaulting to {default}")
        return default
    if value < 0:
        logger.warning(f"Negative {name} '{raw}', defaulting to {default}")
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class Settings:
    """Connection and scheduling settings for the engine."""

    base_url: str = "http://127.0.0.1:8080"
    session: str | None = None
    cookie_name: str = "id"
    timeout: float = 30.0
    poll_interval: float = 5.0  # 0 disables polling
    push_enabled: bool = True
    reconnect_delay: float = 3.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from FILETASKS_* environment variables."""
        settings = cls(
            base_url=os.environ.get("FILETASKS_BASE_URL", cls.base_url).rstrip("/"),
            session=os.environ.get("FILETASKS_SESSION") or None,
            cookie_name=os.environ.get("FILETASKS_COOKIE_NAME", cls.cookie_name),
            timeout=_env_float("FILETASKS_TIMEOUT", cls.timeout),
            poll_interval=_env_float("FILETASKS_POLL_INTERVAL", cls.poll_interval),
            push_enabled=_env_bool("FILETASKS_PUSH", cls.push_enabled),
            reconnect_delay=_env_float("FILETASKS_RECONNECT_DELAY", cls.reconnect_delay),
            log_level=os.environ.get("FILETASKS_LOG_LEVEL", cls.log_level).upper(),
        )
        if settings.log_level not in _LOG_LEVELS:
            logger.warning(f"Invalid FILETASKS_LOG_LEVEL '{settings.log_level}', defaulting to INFO")
            settings.log_level = "INFO"
        if settings.session is None:
            logger.warning("FILETASKS_SESSION is not set, requests will be unauthenticated")
        return settings
