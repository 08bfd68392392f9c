"""
Admin maintenance endpoints.
Disabled (404) unless LP_ADMIN_KEY is set; callers send it as X-Admin-Key.
"""

import hmac
from datetime import date

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from linkpulse.config import get_settings
from linkpulse.core.aggregator import ClickAggregator, rebuild_rollups
from linkpulse.core.retention import earliest_replayable_day, purge_expired_click_events
from linkpulse.dependencies import get_aggregator
from linkpulse.errors import Forbidden, NotFound
from linkpulse.models.database import get_db

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


class RebuildRequest(BaseModel):
    since: date | None = None


def require_admin(x_admin_key: str | None = Header(None)) -> None:
    settings = get_settings()
    if not settings.admin_key:
        raise NotFound("Not found")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.admin_key):
        raise Forbidden("Invalid admin key")


@router.post("/rollups/rebuild", dependencies=[Depends(require_admin)])
async def rebuild(
    body: RebuildRequest | None = None,
    db: AsyncSession = Depends(get_db),
    aggregator: ClickAggregator = Depends(get_aggregator),
):
    """Replay retained click events into click_rollups.

    Defaults to the oldest fully retained day; an earlier `since` is clamped
    to it. The aggregator is paused for the duration.
    """
    settings = get_settings()
    retention_days = settings.click_retention_days
    since = (body.since if body else None) or earliest_replayable_day(retention_days)
    async with aggregator.paused():
        since, replayed = await rebuild_rollups(db, since, retention_days=retention_days)
    logger.info("admin_rollups_rebuilt", since=since.isoformat(), events=replayed)
    return {"since": since.isoformat(), "events_replayed": replayed}


@router.post("/click-events/purge", dependencies=[Depends(require_admin)])
async def purge(db: AsyncSession = Depends(get_db)):
    settings = get_settings()
    deleted = await purge_expired_click_events(db, settings.click_retention_days)
    return {"deleted": deleted, "retention_days": settings.click_retention_days}
