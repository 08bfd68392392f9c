"""
Retry with exponential backoff for transient store failures.

Used two ways:
  - API write paths: a few quick attempts, then TransientStoreError (503)
  - Click aggregator: more patient attempts; nobody is waiting on it
"""

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from linkpulse.config import get_settings
from linkpulse.errors import TransientStoreError

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

MAX_DELAY_SECONDS = 5.0


def is_transient(exc: BaseException) -> bool:
    """Timeouts and connection-level failures are worth another try."""
    if isinstance(exc, (TransientStoreError, asyncio.TimeoutError, OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Full-jitter exponential backoff, attempt is 1-based."""
    ceiling = min(MAX_DELAY_SECONDS, base_delay * (2 ** (attempt - 1)))
    return random.uniform(ceiling / 2, ceiling)


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    event: str = "store_retry",
    **log_context,
) -> T:
    """Run operation, retrying transient failures.

    Non-transient errors propagate immediately. When attempts run out the
    last transient error is re-raised as TransientStoreError.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt == attempts:
                raise TransientStoreError("The data store is temporarily unavailable.") from exc
            delay = backoff_delay(attempt, base_delay)
            logger.warning(event, attempt=attempt, delay=round(delay, 3),
                           error=str(exc), error_type=type(exc).__name__, **log_context)
            await asyncio.sleep(delay)
    raise TransientStoreError("The data store is temporarily unavailable.")


async def retry_store_call(db, operation: Callable[[], Awaitable[T]], **log_context) -> T:
    """API write-path wrapper: roll the session back between attempts."""
    settings = get_settings()

    async def attempt() -> T:
        try:
            return await operation()
        except Exception:
            await db.rollback()
            raise

    return await retry_transient(
        attempt,
        attempts=settings.store_retry_attempts,
        base_delay=settings.store_retry_base_delay_seconds,
        **log_context,
    )
