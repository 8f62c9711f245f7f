"""Shared HTTP helpers used by the code-hosting, vulnerability and CI clients.

Encapsulates common request/timeout error handling so modules avoid
duplicating try/except blocks. Transport failures never exit the process:
they come back as status ``0`` so that one unreachable service only fails
the candidate that needed it.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional, Dict, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)


# Simple in-memory cache for HTTP responses
_http_cache: Dict[str, Tuple[Any, float]] = {}


def _get_cache_key(method: str, url: str, headers: Optional[Dict[str, str]] = None) -> str:
    """Generate cache key from request parameters."""
    headers_str = str(sorted(headers.items())) if headers else ""
    return f"{method}:{url}:{headers_str}"


def _is_cache_valid(cache_entry: Tuple[Any, float]) -> bool:
    """Check if cache entry is still valid."""
    _, cached_time = cache_entry
    return time.time() - cached_time < Constants.HTTP_CACHE_TTL_SEC


def clear_cache() -> None:
    """Drop every cached response."""
    _http_cache.clear()


def _trace(message: str, method: str, target: str, **fields: Any) -> None:
    if is_debug_enabled(logger):
        logger.debug(
            message,
            extra=extra_context(component="http_client", action=method, target=target, **fields),
        )


def robust_request(
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    use_cache: bool = False,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], str]:
    """Perform a request with timeout, retries and optional caching.

    Returns:
        Tuple of (status_code, headers_dict, body_text). ``status_code`` is 0
        when every attempt failed at the transport level.
    """
    key = _get_cache_key(method, url, headers)
    target = safe_url(url)

    entry = _http_cache.get(key) if use_cache else None
    if entry is not None and _is_cache_valid(entry):
        _trace("HTTP cache hit", method, target, event="cache_hit")
        return entry[0]

    failure = None
    for attempt in range(1, Constants.HTTP_RETRY_MAX + 1):
        _trace("HTTP request", method, target, event="http_request", attempt=attempt)
        with Timer() as t:
            try:
                response = requests.request(
                    method, url, timeout=Constants.REQUEST_TIMEOUT, headers=headers, **kwargs
                )
            except requests.Timeout:
                failure = "timeout"
            except requests.RequestException as exc:
                failure = str(exc)
            else:
                result = (response.status_code, dict(response.headers), response.text)
                # Server errors are never cached.
                if use_cache and response.status_code < 500:
                    _http_cache[key] = (result, time.time())
                _trace(
                    "HTTP response", method, target, event="http_response",
                    status_code=response.status_code, duration_ms=t.duration_ms(),
                )
                return result
        _trace("HTTP request failed", method, target, event="http_exception", outcome=failure, attempt=attempt)

    logger.warning("%s %s failed after %s attempts: %s", method, target, Constants.HTTP_RETRY_MAX, failure)
    return 0, {}, f"Request failed after {Constants.HTTP_RETRY_MAX} attempts: {failure}"


def _parse_json(status_code: int, text: str, url: str) -> Optional[Any]:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        _trace("JSON decode error", "json", safe_url(url), event="parse", status_code=status_code)
        return None


def get_json(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    use_cache: bool = True,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """Perform GET request and parse JSON response.

    Args:
        url: Target URL
        headers: Optional request headers
        use_cache: Serve and store responses in the short-lived cache
        **kwargs: Additional requests parameters

    Returns:
        Tuple of (status_code, headers_dict, parsed_json_or_none)
    """
    status_code, response_headers, text = robust_request(
        "GET", url, headers=headers, use_cache=use_cache, **kwargs
    )
    if status_code == 200:
        return status_code, response_headers, _parse_json(status_code, text, url)
    return status_code, response_headers, None


def post_json(
    url: str,
    payload: Any,
    *,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """POST a JSON payload and parse the JSON response (never cached).

    Returns:
        Tuple of (status_code, headers_dict, parsed_json_or_none)
    """
    status_code, response_headers, text = robust_request(
        "POST", url, headers=headers, json=payload, **kwargs
    )
    if status_code == 0:
        return status_code, response_headers, None
    return status_code, response_headers, _parse_json(status_code, text, url)
