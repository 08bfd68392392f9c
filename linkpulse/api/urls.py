"""
URL management API: create, list, delete short URLs and read per-URL analytics.

Security:
  - Requires a Bearer token; the owner id comes from the auth provider
  - List/delete/analytics are scoped to the caller's own mappings
  - No owner id in request bodies
  - URL creation is rate limited per owner
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from linkpulse.api.schemas import (
    BrowserCount,
    CamelModel,
    CountryClicks,
    DatePoint,
    DeviceCount,
    PageResponse,
    UrlMappingResponse,
    browsers,
    countries,
    devices,
)
from linkpulse.core.cache import MappingCache
from linkpulse.core.mappings import create_mapping, delete_mapping, list_by_owner
from linkpulse.core.retry import retry_store_call
from linkpulse.core.stats import get_url_analytics
from linkpulse.dependencies import get_mapping_cache
from linkpulse.middleware.auth import OwnerContext, require_owner
from linkpulse.middleware.rate_limit import rate_limit_shorten
from linkpulse.models.database import get_db

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/url", tags=["urls"])


class ShortenRequest(CamelModel):
    original_url: str


class UrlAnalyticsResponse(CamelModel):
    short_code: str
    original_url: str
    click_count: int
    created_at: datetime
    start_date: date
    end_date: date
    total_clicks: int
    clicks_by_date: list[DatePoint]
    clicks_by_country: list[CountryClicks]
    device_stats: list[DeviceCount]
    browser_stats: list[BrowserCount]


@router.post("/shorten", response_model=UrlMappingResponse, status_code=201)
async def shorten_url(
    req: ShortenRequest,
    owner: OwnerContext = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    rate_limit_shorten(owner.owner_id)
    mapping = await retry_store_call(
        db, lambda: create_mapping(db, req.original_url, owner.owner_id),
        event="shorten_store_retry",
    )
    return UrlMappingResponse.from_mapping(mapping)


@router.get("/myurls", response_model=PageResponse)
async def my_urls(
    page: int = Query(0, ge=0),
    size: int = Query(10, ge=1),
    owner: OwnerContext = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    """Caller's live short URLs, newest first. page is 0-based."""
    result = await retry_store_call(db, lambda: list_by_owner(db, owner.owner_id, page, size))
    return PageResponse.from_page(result)


@router.delete("/{short_code}", status_code=204)
async def delete_url(
    short_code: str,
    owner: OwnerContext = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
    cache: MappingCache = Depends(get_mapping_cache),
):
    await retry_store_call(
        db, lambda: delete_mapping(db, short_code, owner.owner_id),
        event="delete_store_retry",
    )
    # Tombstone is committed, stop serving the redirect from memory
    cache.invalidate(short_code)
    return Response(status_code=204)


@router.get("/{short_code}/analytics", response_model=UrlAnalyticsResponse)
async def url_analytics(
    short_code: str,
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    owner: OwnerContext = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    """Click breakdown for one of the caller's URLs. Default range: last 30 days."""
    analytics = await retry_store_call(
        db, lambda: get_url_analytics(db, short_code, owner.owner_id, start_date, end_date),
    )
    mapping = analytics.mapping
    summary = UrlMappingResponse.from_mapping(mapping)
    return UrlAnalyticsResponse(
        short_code=summary.short_code,
        original_url=summary.original_url,
        click_count=summary.click_count,
        created_at=summary.created_at,
        start_date=analytics.start,
        end_date=analytics.end,
        total_clicks=analytics.total_clicks,
        clicks_by_date=[DatePoint(date=p.date, clicks=p.clicks) for p in analytics.clicks_by_date],
        clicks_by_country=countries(analytics.clicks_by_country),
        device_stats=devices(analytics.device_stats),
        browser_stats=browsers(analytics.browser_stats),
    )
