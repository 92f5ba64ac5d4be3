"""
Logging and error-reporting setup.

Modules log through the standard ``logging`` functions. Echo360 flows carry a
request id so the lines of one detection or extraction can be correlated.
Sentry is enabled only when a DSN is configured.
"""

import logging
import random
import string
import time
from typing import Any, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from .config import get_settings

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(module)s - %(message)s'

# Keys whose values are secrets or user content and must never leave the process
SENSITIVE_PATTERNS = [
    "COOKIE",
    "AUTHORIZATION",
    "SESSION",
    "PASSWORD",
    "TOKEN",
    "SENTRY_DSN",
]
CONTENT_KEYS = {
    "transcript",
    "plaintext",
    "plain_text",
    "segments",
    "text",
    "captions",
    "cues",
    "vtt",
    "html",
}

_BASE36 = string.digits + string.ascii_lowercase


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for CLI and host processes."""
    level_name = (level or get_settings().log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    negative = value < 0
    value = abs(value)
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return ("-" if negative else "") + "".join(reversed(digits))


def hash_string(value: str) -> str:
    """Stable base36 id fragment (Java-style 32-bit string hash of UTF-16 code units)."""
    hashed = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        hashed = ((hashed << 5) - hashed + code_unit) & 0xFFFFFFFF
    if hashed >= 0x80000000:
        hashed -= 0x100000000
    return to_base36(abs(hashed))


def new_request_id(prefix: str = "echo360") -> str:
    """Return a short id such as ``echo360-lq2x9k1a-4f7c2``."""
    suffix = "".join(random.choice(_BASE36) for _ in range(5))
    return f"{prefix}-{to_base36(int(time.time() * 1000))}-{suffix}"


def _format_fields(fields: dict) -> str:
    parts = [f"{key}={value!r}" for key, value in fields.items() if value is not None]
    return " ".join(parts)


def log_event(level: int, request_id: str, message: str, **fields: Any) -> None:
    """Log ``message`` tagged with ``request_id`` and trailing key=value fields."""
    rendered = _format_fields(fields)
    line = f"[{request_id}] {message}"
    if rendered:
        line = f"{line} {rendered}"
    logging.log(level, line)


def sanitize_event(event, hint):
    """Redact secrets and transcript content from Sentry events."""

    def contains_sensitive(text: str) -> bool:
        upper_text = text.upper()
        return any(pattern in upper_text for pattern in SENSITIVE_PATTERNS)

    def sanitize(value):
        if isinstance(value, dict):
            for key, val in list(value.items()):
                key_str = str(key)
                if contains_sensitive(key_str) or key_str.lower() in CONTENT_KEYS:
                    value[key] = "[REDACTED]"
                    continue
                if isinstance(val, str) and contains_sensitive(val):
                    value[key] = "[REDACTED]"
                else:
                    sanitize(val)
        elif isinstance(value, list):
            for idx, item in enumerate(value):
                if isinstance(item, str) and contains_sensitive(item):
                    value[idx] = "[REDACTED]"
                else:
                    sanitize(item)

    sanitize(event)
    return event


def init_sentry() -> bool:
    """Initialise Sentry when a DSN is configured. Returns True if enabled."""
    settings = get_settings()
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        before_send=sanitize_event,
    )
    logging.info("Sentry monitoring initialized for transcript extraction")
    return True
