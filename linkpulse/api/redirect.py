"""
Redirect endpoint: GET /{short_code}

Hot path. Flow:
  1. Syntactic check on the code (junk never reaches the store)
  2. Mapping cache → store lookup under a short timeout
  3. Hand a ClickMessage to the aggregator (non-blocking, best-effort)
  4. 302 to the original URL

Failure policy:
  - unknown, deleted, store timeout, store error → the same generic 404 page
  - the response never waits on click persistence or enrichment
"""

import asyncio
import ipaddress
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from linkpulse.config import get_settings
from linkpulse.core.aggregator import ClickAggregator, ClickMessage
from linkpulse.core.cache import MappingCache
from linkpulse.core.mappings import resolve_mapping
from linkpulse.core.retry import is_transient
from linkpulse.core.short_code import is_valid_short_code
from linkpulse.dependencies import get_aggregator, get_mapping_cache
from linkpulse.errors import NotFound
from linkpulse.models.database import get_db

import structlog

logger = structlog.get_logger()
router = APIRouter(tags=["redirect"])

NOT_FOUND_HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="robots" content="noindex,nofollow">
<title>Link not found</title>
</head>
<body>
<h1>404</h1>
<p>This short link does not exist.</p>
</body>
</html>"""


def _get_real_ip(request: Request) -> str | None:
    """Extract real client IP from x-forwarded-for or request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First public IP in the chain is the client; junk entries are ignored
        addrs = []
        for part in forwarded.split(","):
            try:
                addrs.append(ipaddress.ip_address(part.strip()))
            except ValueError:
                continue
        for addr in addrs:
            if addr.is_global:
                return str(addr)
        if addrs:
            return str(addrs[0])
    return request.client.host if request.client else None


def _not_found() -> HTMLResponse:
    return HTMLResponse(NOT_FOUND_HTML, status_code=404, headers={"Cache-Control": "no-store"})


async def _lookup(db: AsyncSession, cache: MappingCache, short_code: str) -> str | None:
    generation = cache.generation
    url = cache.get(short_code)
    if url is not None:
        return url

    settings = get_settings()
    try:
        mapping = await asyncio.wait_for(
            resolve_mapping(db, short_code),
            timeout=settings.redirect_lookup_timeout_seconds,
        )
    except NotFound:
        return None
    except asyncio.TimeoutError:
        logger.warning("redirect_store_timeout", short_code=short_code,
                       timeout_s=settings.redirect_lookup_timeout_seconds)
        return None
    except SQLAlchemyError as e:
        logger.error("redirect_store_error", short_code=short_code, transient=is_transient(e),
                     error=str(e), error_type=type(e).__name__)
        return None

    cache.put(short_code, mapping.original_url, generation=generation)
    return mapping.original_url


@router.get("/{short_code}", include_in_schema=False)
async def redirect_short_code(
    short_code: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: MappingCache = Depends(get_mapping_cache),
    aggregator: ClickAggregator = Depends(get_aggregator),
):
    start = time.monotonic()

    if not is_valid_short_code(short_code):
        return _not_found()

    original_url = await _lookup(db, cache, short_code)
    if original_url is None:
        return _not_found()

    # Fire-and-forget: put_nowait, a full queue only costs us the click
    aggregator.submit(ClickMessage(
        short_code=short_code,
        ip_address=_get_real_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    ))

    logger.debug("redirect", short_code=short_code,
                 elapsed_ms=round((time.monotonic() - start) * 1000, 2))

    return RedirectResponse(url=original_url, status_code=302,
                            headers={"Cache-Control": "no-store"})
