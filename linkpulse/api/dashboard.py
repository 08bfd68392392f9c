"""
Dashboard API: Bearer-authenticated stats for the front-end.
All queries scoped by the caller's owner id and served from rollups.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from linkpulse.api.schemas import (
    BrowserCount,
    CamelModel,
    CountryClicks,
    DatePoint,
    DeviceCount,
    UrlMappingResponse,
    browsers,
    countries,
    devices,
)
from linkpulse.config import get_settings
from linkpulse.core.retry import retry_store_call
from linkpulse.core.stats import get_dashboard_stats
from linkpulse.middleware.auth import OwnerContext, require_owner
from linkpulse.models.database import get_db

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


class DashboardStatsResponse(CamelModel):
    total_urls: int
    total_clicks: int
    clicks_today: int
    urls_today: int
    top_urls: list[UrlMappingResponse]
    clicks_by_date: list[DatePoint]
    clicks_by_country: list[CountryClicks]
    device_stats: list[DeviceCount]
    browser_stats: list[BrowserCount]


@router.get("/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(
    days: int | None = Query(None, ge=1, le=366),
    owner: OwnerContext = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    """Totals, per-day series, geo/device/browser breakdowns and top URLs."""
    settings = get_settings()
    stats = await retry_store_call(
        db,
        lambda: get_dashboard_stats(
            db,
            owner.owner_id,
            days=days or settings.dashboard_default_days,
            top_n=settings.dashboard_top_urls,
        ),
    )
    return DashboardStatsResponse(
        total_urls=stats.total_urls,
        total_clicks=stats.total_clicks,
        clicks_today=stats.clicks_today,
        urls_today=stats.urls_today,
        top_urls=[UrlMappingResponse.from_mapping(m) for m in stats.top_urls],
        clicks_by_date=[DatePoint(date=p.date, clicks=p.clicks, urls=p.urls) for p in stats.clicks_by_date],
        clicks_by_country=countries(stats.clicks_by_country),
        device_stats=devices(stats.device_stats),
        browser_stats=browsers(stats.browser_stats),
    )
