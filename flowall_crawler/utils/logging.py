from __future__ import annotations

import logging
import os
import re

# Third-party loggers that drown out crawl progress at INFO.
_NOISY = ("aiohttp.access", "apscheduler.executors.default")

# Credentials travel as query parameters (`?key=` for Gemini) and can surface in
# exception text that includes the request URL.
_SECRET_PARAM_RE = re.compile(r"([?&](?:key|apikey)=)([^&\s'\"]+)", re.IGNORECASE)


def mask_key(key: str) -> str:
    """Show only the first six characters of a credential."""
    return key[:6] + "***"


class RedactKeysFilter(logging.Filter):
    """Masks credential query parameters in the fully formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_PARAM_RE.sub(lambda m: m.group(1) + mask_key(m.group(2)), message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _resolve_level(level: str | int | None) -> int:
    if level is None:
        level = os.getenv("CRAWLER_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | int | None = None) -> None:
    """
    Configure application logging with a consistent formatter. Level comes from
    the argument, then CRAWLER_LOG_LEVEL, then INFO.
    """
    level = _resolve_level(level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactKeysFilter) for f in handler.filters):
            handler.addFilter(RedactKeysFilter())
    for name in _NOISY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
