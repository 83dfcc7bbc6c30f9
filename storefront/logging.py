"""
Logging for the storefront checkout core.

Every module takes its logger from here:

    from storefront.logging import get_logger
    logger = get_logger(__name__)

Gateway references and payment ids arrive on the return URL, so anything
taken from a query string goes through sanitize_id_for_logging. Bearer
tokens are never logged in full, only through mask_token.
"""

import logging
import os
import sys
from functools import cache
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FORMAT_COMPACT = "[%(levelname)s] %(name)s: %(message)s"

# Chatty per-request loggers of the HTTP and Redis REST clients
NOISY_LOGGERS = ("httpx", "httpcore", "upstash_redis")

_CONTROL_CHARS = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": ""}


def resolve_log_level(name: Optional[str] = None) -> int:
    """STOREFRONT_LOG_LEVEL, then LOG_LEVEL, then INFO. Unknown names fall back to INFO."""
    if name is None:
        name = os.environ.get("STOREFRONT_LOG_LEVEL") or os.environ.get("LOG_LEVEL", "INFO")
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    level: Optional[int] = None,
    *,
    compact: Optional[bool] = None,
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> Optional[logging.Handler]:
    """
    Attach one stdout handler to the root logger.

    Leaves an already configured root alone (uvicorn, pytest) unless
    force is set. Production (STOREFRONT_ENV=production) gets the compact
    format because the platform stamps its own time.

    Returns:
        The installed handler, or None when nothing was changed
    """
    root = logging.getLogger()
    if root.handlers and not force:
        return None

    if level is None:
        level = resolve_log_level()
    if compact is None:
        compact = os.environ.get("STOREFRONT_ENV") == "production"

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_COMPACT if compact else LOG_FORMAT))

    root.setLevel(level)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


configure_logging()


@cache
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _strip_control_chars(value: str) -> str:
    # Keeps a crafted order_id from forging extra log lines
    for char, replacement in _CONTROL_CHARS.items():
        value = value.replace(char, replacement)
    return value


def sanitize_id_for_logging(id_value: Optional[str], max_length: int = 32) -> str:
    """
    Make a gateway reference or product id safe to log.

    Control characters are escaped and long values are cut with "...".
    Empty values render as "N/A".
    """
    if not id_value:
        return "N/A"
    safe_value = _strip_control_chars(str(id_value))
    if len(safe_value) > max_length:
        return safe_value[:max_length] + "..."
    return safe_value


def mask_token(token: Optional[str], visible: int = 4) -> str:
    """Bearer token as its last few characters, e.g. "***z789"."""
    if not token:
        return "N/A"
    token = str(token)
    if len(token) <= visible * 2:
        return "***"
    return "***" + _strip_control_chars(token[-visible:])


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_COMPACT",
    "configure_logging",
    "get_logger",
    "mask_token",
    "resolve_log_level",
    "sanitize_id_for_logging",
]
