"""Response/request bodies shared by the API routers. JSON keys are camelCase."""

from datetime import date as Date, datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from linkpulse.config import get_settings
from linkpulse.core.mappings import Page
from linkpulse.core.stats import Breakdown
from linkpulse.models.tables import UrlMapping


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


class UrlMappingResponse(CamelModel):
    id: UUID
    original_url: str
    short_code: str
    short_url: str
    created_at: datetime
    click_count: int

    @classmethod
    def from_mapping(cls, mapping: UrlMapping) -> "UrlMappingResponse":
        base_url = get_settings().base_url.rstrip("/")
        return cls(
            id=mapping.id,
            original_url=mapping.original_url,
            short_code=mapping.short_code,
            short_url=f"{base_url}/{mapping.short_code}",
            created_at=as_utc(mapping.created_at),
            click_count=mapping.click_count or 0,
        )


class PageResponse(CamelModel):
    content: list[UrlMappingResponse]
    total_elements: int
    total_pages: int
    size: int
    number: int
    first: bool
    last: bool

    @classmethod
    def from_page(cls, page: Page) -> "PageResponse":
        return cls(
            content=[UrlMappingResponse.from_mapping(m) for m in page.content],
            total_elements=page.total_elements,
            total_pages=page.total_pages,
            size=page.size,
            number=page.number,
            first=page.first,
            last=page.last,
        )


class DatePoint(CamelModel):
    date: Date
    clicks: int
    urls: int = 0


class CountryClicks(CamelModel):
    country: str
    clicks: int
    percentage: int


class DeviceCount(CamelModel):
    device: str
    count: int
    percentage: int


class BrowserCount(CamelModel):
    browser: str
    count: int
    percentage: int


def countries(items: list[Breakdown]) -> list[CountryClicks]:
    return [CountryClicks(country=b.name, clicks=b.count, percentage=b.percentage) for b in items]


def devices(items: list[Breakdown]) -> list[DeviceCount]:
    return [DeviceCount(device=b.name, count=b.count, percentage=b.percentage) for b in items]


def browsers(items: list[Breakdown]) -> list[BrowserCount]:
    return [BrowserCount(browser=b.name, count=b.count, percentage=b.percentage) for b in items]
