"""
Raw click retention.

click_events rows older than click_retention_days are deleted. Rollups and
click_count already hold their contribution, so dashboards are unaffected;
only rebuild_rollups loses the ability to replay that far back.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from linkpulse.models.tables import ClickEvent

import structlog

logger = structlog.get_logger()


def earliest_replayable_day(retention_days: int, now: datetime | None = None) -> date:
    """First UTC day whose raw click events are all still retained."""
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=retention_days)).date() + timedelta(days=1)


async def purge_expired_click_events(
    db: AsyncSession,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    """Delete raw click events older than the retention window. Returns rows deleted."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    result = await db.execute(delete(ClickEvent).where(ClickEvent.clicked_at < cutoff))
    await db.commit()
    deleted = result.rowcount or 0
    logger.info("click_events_purged", deleted=deleted, cutoff=cutoff.isoformat())
    return deleted


async def run_purge_loop(
    session_maker: async_sessionmaker[AsyncSession],
    retention_days: int,
    interval_seconds: int,
) -> None:
    """Background task: purge, sleep, repeat. Cancelled on shutdown."""
    while True:
        try:
            async with session_maker() as db:
                await purge_expired_click_events(db, retention_days)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("click_events_purge_failed")
        await asyncio.sleep(interval_seconds)
