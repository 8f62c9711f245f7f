"""Logging helpers shared by every module.

Provides a single configuration entry point plus the small utilities used
for structured DEBUG traces (``extra_context``, ``is_debug_enabled``,
``safe_url`` and ``Timer``).
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from constants import Constants

ENV_LOG_LEVEL = "NIXPKGS_UPDATE_LOG_LEVEL"

_SENSITIVE_QUERY_KEYS = {"token", "access_token", "api_key", "apikey", "key", "secret"}
_TOKEN_RE = re.compile(r"(gh[pousr]_[A-Za-z0-9]{20,})")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    The level is taken from the argument, then the ``NIXPKGS_UPDATE_LOG_LEVEL``
    environment variable, and finally defaults to INFO.
    """
    level_name = (level or os.environ.get(ENV_LOG_LEVEL) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level_value, format=Constants.LOG_FORMAT)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from ``logger`` would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping for structured log records, dropping None values."""
    return {k: v for k, v in fields.items() if v is not None}


def safe_url(url: str) -> str:
    """Strip credentials and secret query parameters from a URL for logging."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return _TOKEN_RE.sub("***", url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***@" + netloc.split("@", 1)[1]
    query = parts.query
    if query:
        pairs = [
            (k, "***" if k.lower() in _SENSITIVE_QUERY_KEYS else v)
            for k, v in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="*")
    cleaned = urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))
    return _TOKEN_RE.sub("***", cleaned)


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.monotonic()
        self._end = None
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._end = time.monotonic()

    def duration_ms(self) -> int:
        """Elapsed milliseconds so far (or total, once the block exited)."""
        end = self._end if self._end is not None else time.monotonic()
        return int((end - self._start) * 1000)
