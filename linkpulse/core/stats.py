"""
Stats queries: read-only, served from url_mappings + click_rollups.

Raw click_events are never scanned per request. All day boundaries are UTC.
Counts may trail real traffic by the aggregator's queue delay.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from linkpulse.core.aggregator import TOTAL
from linkpulse.core.mappings import get_owned_mapping
from linkpulse.errors import ValidationError
from linkpulse.models.tables import ClickRollup, UrlMapping

MAX_RANGE_DAYS = 366
DEFAULT_ANALYTICS_DAYS = 30


@dataclass
class SeriesPoint:
    date: date
    clicks: int = 0
    urls: int = 0


@dataclass
class Breakdown:
    name: str
    count: int
    percentage: int


@dataclass
class DashboardStats:
    total_urls: int = 0
    total_clicks: int = 0
    clicks_today: int = 0
    urls_today: int = 0
    top_urls: list[UrlMapping] = field(default_factory=list)
    clicks_by_date: list[SeriesPoint] = field(default_factory=list)
    clicks_by_country: list[Breakdown] = field(default_factory=list)
    device_stats: list[Breakdown] = field(default_factory=list)
    browser_stats: list[Breakdown] = field(default_factory=list)


@dataclass
class UrlAnalytics:
    mapping: UrlMapping
    start: date
    end: date
    total_clicks: int = 0
    clicks_by_date: list[SeriesPoint] = field(default_factory=list)
    clicks_by_country: list[Breakdown] = field(default_factory=list)
    device_stats: list[Breakdown] = field(default_factory=list)
    browser_stats: list[Breakdown] = field(default_factory=list)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _empty_series(start: date, end: date) -> dict[date, SeriesPoint]:
    days = (end - start).days + 1
    return {start + timedelta(days=i): SeriesPoint(date=start + timedelta(days=i)) for i in range(days)}


def to_breakdown(rows: list[tuple[str, int]]) -> list[Breakdown]:
    """(bucket, count) rows → sorted breakdown with integer percentages."""
    total = sum(count for _, count in rows)
    items = [
        Breakdown(name=name, count=count, percentage=round(count * 100 / total) if total else 0)
        for name, count in rows
        if count
    ]
    items.sort(key=lambda b: (-b.count, b.name))
    return items


def resolve_range(start: date | None, end: date | None, today: date | None = None) -> tuple[date, date]:
    """Default: the last 30 days through today."""
    today = today or utc_today()
    end = end or today
    start = start or end - timedelta(days=DEFAULT_ANALYTICS_DAYS - 1)
    if start > end:
        raise ValidationError("startDate must not be after endDate.")
    if (end - start).days + 1 > MAX_RANGE_DAYS:
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days.")
    return start, end


async def _daily_clicks(db: AsyncSession, codes, start: date, end: date) -> dict[date, int]:
    result = await db.execute(
        select(ClickRollup.day, func.sum(ClickRollup.clicks))
        .where(
            ClickRollup.short_code.in_(codes),
            ClickRollup.dimension == TOTAL,
            ClickRollup.day >= start,
            ClickRollup.day <= end,
        )
        .group_by(ClickRollup.day)
    )
    return {day: int(clicks or 0) for day, clicks in result.all()}


async def _dimension_rows(db: AsyncSession, codes, dimension: str, start: date, end: date) -> list[tuple[str, int]]:
    result = await db.execute(
        select(ClickRollup.bucket, func.sum(ClickRollup.clicks))
        .where(
            ClickRollup.short_code.in_(codes),
            ClickRollup.dimension == dimension,
            ClickRollup.day >= start,
            ClickRollup.day <= end,
        )
        .group_by(ClickRollup.bucket)
    )
    return [(bucket, int(clicks or 0)) for bucket, clicks in result.all()]


async def get_dashboard_stats(
    db: AsyncSession,
    owner_id: str,
    days: int = 7,
    top_n: int = 5,
    today: date | None = None,
) -> DashboardStats:
    """Totals, daily series, breakdowns and top URLs for one owner."""
    today = today or utc_today()
    days = min(max(days, 1), MAX_RANGE_DAYS)
    start = today - timedelta(days=days - 1)

    live = (UrlMapping.owner_id == owner_id, UrlMapping.deleted_at.is_(None))
    owned_codes = select(UrlMapping.short_code).where(*live)

    totals = (await db.execute(
        select(
            func.count(UrlMapping.id),
            func.coalesce(func.sum(UrlMapping.click_count), 0),
        ).where(*live)
    )).one()

    stats = DashboardStats(total_urls=int(totals[0]), total_clicks=int(totals[1]))
    series = _empty_series(start, today)
    if stats.total_urls == 0:
        stats.clicks_by_date = list(series.values())
        return stats

    top = await db.execute(
        select(UrlMapping)
        .where(*live)
        .order_by(UrlMapping.click_count.desc(), UrlMapping.created_at.desc(), UrlMapping.short_code.asc())
        .limit(top_n)
    )
    stats.top_urls = list(top.scalars().all())

    for day, clicks in (await _daily_clicks(db, owned_codes, start, today)).items():
        if day in series:
            series[day].clicks = clicks

    created = await db.execute(
        select(UrlMapping.created_at).where(*live, UrlMapping.created_at >= _day_start(start))
    )
    for (created_at,) in created.all():
        day = created_at.date()
        if day in series:
            series[day].urls += 1

    stats.clicks_by_date = list(series.values())
    stats.clicks_today = series[today].clicks
    stats.urls_today = series[today].urls
    stats.clicks_by_country = to_breakdown(await _dimension_rows(db, owned_codes, "country", start, today))
    stats.device_stats = to_breakdown(await _dimension_rows(db, owned_codes, "device", start, today))
    stats.browser_stats = to_breakdown(await _dimension_rows(db, owned_codes, "browser", start, today))
    return stats


async def get_url_analytics(
    db: AsyncSession,
    short_code: str,
    owner_id: str,
    start: date | None = None,
    end: date | None = None,
    today: date | None = None,
) -> UrlAnalytics:
    """Per-URL breakdown for its owner. NotFound/Forbidden from the store."""
    mapping = await get_owned_mapping(db, short_code, owner_id)
    start, end = resolve_range(start, end, today)
    codes = [short_code]

    series = _empty_series(start, end)
    for day, clicks in (await _daily_clicks(db, codes, start, end)).items():
        series[day].clicks = clicks

    points = list(series.values())
    return UrlAnalytics(
        mapping=mapping,
        start=start,
        end=end,
        total_clicks=sum(p.clicks for p in points),
        clicks_by_date=points,
        clicks_by_country=to_breakdown(await _dimension_rows(db, codes, "country", start, end)),
        device_stats=to_breakdown(await _dimension_rows(db, codes, "device", start, end)),
        browser_stats=to_breakdown(await _dimension_rows(db, codes, "browser", start, end)),
    )
