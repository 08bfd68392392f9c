"""
Rate limiter: in-process sliding window.

Limits:
  - URL creation per owner: configurable (default 60/min)

The redirect path is deliberately not limited here.
"""

import time

from linkpulse.config import get_settings
from linkpulse.errors import RateLimited

import structlog

logger = structlog.get_logger()

_memory_store: dict[str, list[float]] = {}
_last_sweep = 0.0
_longest_window = 0


def _sweep(now: float) -> None:
    """Forget keys with no hit inside the longest window in use. Runs at most once per window."""
    global _last_sweep
    if now - _last_sweep < _longest_window:
        return
    _last_sweep = now
    cutoff = now - _longest_window
    stale = [key for key, hits in _memory_store.items() if not hits or hits[-1] <= cutoff]
    for key in stale:
        del _memory_store[key]
    if stale:
        logger.debug("rate_limit_keys_swept", swept=len(stale), remaining=len(_memory_store))


def _sliding_window_check(key: str, limit: int, window_seconds: int = 60) -> tuple[bool, int]:
    global _longest_window
    now = time.time()
    cutoff = now - window_seconds
    _longest_window = max(_longest_window, window_seconds)
    _sweep(now)

    hits = [t for t in _memory_store.get(key, []) if t > cutoff]
    _memory_store[key] = hits

    if len(hits) >= limit:
        return False, 0

    hits.append(now)
    return True, limit - len(hits)


def check_rate_limit(key: str, limit: int, window: int = 60) -> int:
    allowed, remaining = _sliding_window_check(key, limit, window)
    if not allowed:
        logger.info("rate_limited", key=key, limit=limit)
        raise RateLimited(
            "Rate limit exceeded. Slow down.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def rate_limit_shorten(owner_id: str, limit: int | None = None) -> int:
    settings = get_settings()
    return check_rate_limit(f"shorten:{owner_id}", limit or settings.rate_limit_shorten_per_minute)


def reset_rate_limits() -> None:
    global _last_sweep, _longest_window
    _memory_store.clear()
    _last_sweep = 0.0
    _longest_window = 0
