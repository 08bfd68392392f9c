"""
Mapping store: short code → destination URL, with ownership.

Rules:
  - A short code is unique for the lifetime of the system. The unique index
    on url_mappings.short_code is the only arbiter; generation never
    pre-checks (check-then-insert races under concurrent writers).
  - Deletion is a tombstone (deleted_at). The code stays reserved, reads
    treat it exactly like a code that never existed.
  - Nothing here touches click_count; that belongs to the aggregator.
"""

import ipaddress
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlsplit

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linkpulse.config import get_settings
from linkpulse.core.short_code import generate_short_code
from linkpulse.errors import CodeSpaceExhausted, Forbidden, NotFound, ValidationError
from linkpulse.models.tables import UrlMapping

import structlog

logger = structlog.get_logger()

MAX_URL_LENGTH = 2048
MAX_PAGE_SIZE = 100
_BLOCKED_HOSTS = {"localhost", "localhost.localdomain", "0.0.0.0"}


@dataclass
class Page:
    content: list[UrlMapping]
    total_elements: int
    total_pages: int
    size: int
    number: int

    @property
    def first(self) -> bool:
        return self.number == 0

    @property
    def last(self) -> bool:
        return self.number >= self.total_pages - 1


def validate_original_url(url: str | None) -> str:
    """Only absolute http/https URLs pointing at public hosts.

    Returns the URL stripped of surrounding whitespace.
    """
    if not url or not url.strip():
        raise ValidationError("originalUrl is required.")
    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError(f"originalUrl must be at most {MAX_URL_LENGTH} characters.")
    if any(ch.isspace() for ch in url):
        raise ValidationError("originalUrl must not contain whitespace.")

    try:
        parts = urlsplit(url)
        host = parts.hostname
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        raise ValidationError("originalUrl is not a well-formed URL.")

    if parts.scheme.lower() not in ("http", "https"):
        raise ValidationError("originalUrl must start with http:// or https://")
    if not host:
        raise ValidationError("originalUrl must include a host.")

    # Prevent open redirects into internal networks
    if host.lower() in _BLOCKED_HOSTS:
        raise ValidationError("originalUrl cannot point to internal addresses.")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        if "." not in host:
            raise ValidationError("originalUrl host must be a fully qualified domain name.")
    else:
        if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified or ip.is_reserved:
            raise ValidationError("originalUrl cannot point to internal addresses.")

    return url


async def create_mapping(db: AsyncSession, original_url: str, owner_id: str) -> UrlMapping:
    """Validate, allocate a fresh short code and persist the mapping.

    Each attempt is its own transaction; a unique-index violation rolls
    back that attempt only and a new code is drawn.
    """
    url = validate_original_url(original_url)
    settings = get_settings()

    for attempt in range(1, settings.short_code_max_attempts + 1):
        mapping = UrlMapping(
            short_code=generate_short_code(),
            original_url=url,
            owner_id=owner_id,
            created_at=datetime.now(timezone.utc),
            click_count=0,
        )
        db.add(mapping)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("short_code_collision", attempt=attempt, owner_id=owner_id)
            continue
        logger.info("url_created", short_code=mapping.short_code, owner_id=owner_id)
        return mapping

    logger.error("code_space_exhausted", attempts=settings.short_code_max_attempts,
                 code_length=settings.short_code_length, alert=True)
    raise CodeSpaceExhausted("Could not allocate a unique short code. Please retry.")


async def resolve_mapping(db: AsyncSession, short_code: str) -> UrlMapping:
    """Live mapping for a code. Unknown and deleted codes are both NotFound."""
    stmt = select(UrlMapping).where(
        UrlMapping.short_code == short_code,
        UrlMapping.deleted_at.is_(None),
    )
    result = await db.execute(stmt)
    mapping = result.scalar_one_or_none()
    if mapping is None:
        raise NotFound("Short URL not found.")
    return mapping


async def get_owned_mapping(db: AsyncSession, short_code: str, owner_id: str) -> UrlMapping:
    mapping = await resolve_mapping(db, short_code)
    if mapping.owner_id != owner_id:
        raise Forbidden("You do not own this short URL.")
    return mapping


async def delete_mapping(db: AsyncSession, short_code: str, requester_id: str) -> UrlMapping:
    """Tombstone a mapping. Only its owner may delete it."""
    mapping = await get_owned_mapping(db, short_code, requester_id)
    mapping.deleted_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("url_deleted", short_code=short_code, owner_id=requester_id)
    return mapping


async def list_by_owner(db: AsyncSession, owner_id: str, page: int = 0, size: int = 10) -> Page:
    """Live mappings, newest first, ties broken by short code."""
    page = max(page, 0)
    size = min(max(size, 1), MAX_PAGE_SIZE)

    live = (UrlMapping.owner_id == owner_id, UrlMapping.deleted_at.is_(None))

    count_result = await db.execute(select(func.count(UrlMapping.id)).where(*live))
    total = count_result.scalar_one()

    stmt = (
        select(UrlMapping)
        .where(*live)
        .order_by(UrlMapping.created_at.desc(), UrlMapping.short_code.asc())
        .offset(page * size)
        .limit(size)
    )
    result = await db.execute(stmt)

    return Page(
        content=list(result.scalars().all()),
        total_elements=total,
        total_pages=math.ceil(total / size) if total else 0,
        size=size,
        number=page,
    )
