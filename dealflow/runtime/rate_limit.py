"""
Provider-agnostic rate limit handling for model and collaborator calls.

Uses common HTTP conventions: 429 status, Retry-After, x-ratelimit-reset-* headers.
Works for both plain callables and coroutine functions.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RESET_HEADER_NAMES = [
    "x-ratelimit-reset-requests",
    "x-ratelimit-reset-tokens",
    "retry-after",
]

MAX_HEADER_WAIT_SECONDS = 300.0
MAX_BACKOFF_SECONDS = 60.0


class RateLimitSettings(BaseModel):
    """Retry settings shared by workers and collaborators."""

    max_retries: int = Field(default=6, ge=1)
    initial_delay: float = Field(default=1.0, ge=0.0)
    exponential_base: float = Field(default=2.0, ge=1.0)
    use_header_reset: bool = True
    reset_header_names: List[str] = Field(default_factory=lambda: list(DEFAULT_RESET_HEADER_NAMES))


def is_rate_limit_error(exc: BaseException) -> bool:
    """Check if exception indicates a rate limit (HTTP 429)."""
    if getattr(exc, "status_code", None) == 429:
        return True
    response = getattr(exc, "response", None)
    return response is not None and getattr(response, "status_code", None) == 429


def _parse_duration_to_seconds(value: str) -> Optional[float]:
    """
    Parse duration string to seconds.

    Supports:
    - 1s, 6m0s, 1h0m0s (Go-style)
    - 55 (plain seconds)
    - Retry-After HTTP-date (RFC 7231)
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip().lower()
    if not value:
        return None

    if value.isdigit():
        return float(int(value))

    units = {"h": 3600, "m": 60, "s": 1}
    matches = {unit: re.search(rf"(\d+){unit}", value) for unit in units}
    if any(matches.values()):
        return float(sum(int(match.group(1)) * units[unit] for unit, match in matches.items() if match))

    try:
        dt = parsedate_to_datetime(value)
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = (dt - datetime.now(timezone.utc)).total_seconds()
    return delta if delta > 0 else None


def get_reset_seconds_from_exception(
    exc: BaseException,
    header_names: Optional[List[str]] = None,
) -> Optional[float]:
    """
    Extract reset wait time in seconds from exception response headers.

    Tries each header in order; returns first successfully parsed value.
    """
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) if response is not None else None
    if headers is None or not hasattr(headers, "get"):
        return None

    for name in header_names or DEFAULT_RESET_HEADER_NAMES:
        raw = headers.get(name)
        if raw is None:
            continue
        if isinstance(raw, (int, float)):
            return float(raw)
        parsed = _parse_duration_to_seconds(str(raw))
        if parsed is not None:
            return parsed
    return None


def _wait_strategy(settings: RateLimitSettings) -> Callable[[Any], float]:
    """Header-based wait when available, else exponential backoff."""

    def wait(retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None and settings.use_header_reset:
            seconds = get_reset_seconds_from_exception(exc, settings.reset_header_names)
            if seconds is not None and seconds > 0:
                wait_secs = min(seconds, MAX_HEADER_WAIT_SECONDS)
                logger.debug(
                    "Rate limit: waiting for header-based reset",
                    extra={"component": "RateLimit", "data": {
                        "attempt": retry_state.attempt_number,
                        "wait_seconds": wait_secs,
                    }},
                )
                return wait_secs
        return min(
            settings.initial_delay * (settings.exponential_base ** retry_state.attempt_number),
            MAX_BACKOFF_SECONDS,
        )

    return wait


def _retry_kwargs(settings: RateLimitSettings) -> Dict[str, Any]:
    return {
        "retry": retry_if_exception(is_rate_limit_error),
        "stop": stop_after_attempt(settings.max_retries),
        "wait": _wait_strategy(settings),
        "reraise": True,
    }


def invoke_with_rate_limit_retry(func: Callable[[], T], settings: Optional[RateLimitSettings] = None) -> T:
    """Execute a callable, retrying on rate limit errors."""
    wrapped = retry(**_retry_kwargs(settings or RateLimitSettings()))(func)
    return wrapped()


async def ainvoke_with_rate_limit_retry(func: Callable[[], Awaitable[T]],
                                        settings: Optional[RateLimitSettings] = None) -> T:
    """Await a coroutine factory, retrying on rate limit errors."""
    @retry(**_retry_kwargs(settings or RateLimitSettings()))
    async def call() -> T:
        return await func()

    return await call()
