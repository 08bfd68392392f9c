"""
linkpulse: short links with click analytics.
Main application entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from linkpulse.api.admin import router as admin_router
from linkpulse.api.dashboard import router as dashboard_router
from linkpulse.api.redirect import router as redirect_router
from linkpulse.api.urls import router as urls_router
from linkpulse.config import get_settings
from linkpulse.core.aggregator import ClickAggregator
from linkpulse.core.cache import MappingCache
from linkpulse.core.enrichment import ClickEnricher, GeoIPLookup
from linkpulse.core.retention import run_purge_loop
from linkpulse.errors import register_error_handlers
from linkpulse.middleware.security import SecurityHeadersMiddleware
from linkpulse.models.database import create_tables, dispose_engine, get_session_maker

import structlog

VERSION = "0.1.0"

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.DEBUG if get_settings().debug else logging.INFO
    ),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("linkpulse_starting", base_url=settings.base_url)

    if settings.create_tables_on_startup:
        await create_tables()

    session_maker = get_session_maker()
    enricher = ClickEnricher(GeoIPLookup(settings.geoip_city_db_path))
    aggregator = ClickAggregator(
        session_maker,
        enricher,
        workers=settings.aggregator_workers,
        queue_size=settings.aggregator_queue_size,
        retry_attempts=settings.aggregator_retry_attempts,
        retry_base_delay=settings.aggregator_retry_base_delay_seconds,
    )
    aggregator.start()

    app.state.aggregator = aggregator
    app.state.mapping_cache = MappingCache(settings.mapping_cache_size)

    purge_task = asyncio.create_task(
        run_purge_loop(session_maker, settings.click_retention_days, settings.purge_interval_seconds),
        name="click-events-purge",
    )

    yield

    logger.info("linkpulse_shutting_down", pending_clicks=aggregator.pending)
    purge_task.cancel()
    await asyncio.gather(purge_task, return_exceptions=True)
    await aggregator.stop(settings.aggregator_shutdown_timeout_seconds)
    enricher.close()
    await dispose_engine()


app = FastAPI(
    title=get_settings().app_name,
    description="URL shortener with click analytics.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

register_error_handlers(app)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if get_settings().debug else get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "linkpulse", "version": VERSION}


# --- Routes ---
# The redirect catch-all /{short_code} goes last so fixed paths win.
app.include_router(urls_router)
app.include_router(dashboard_router)
app.include_router(admin_router)
app.include_router(redirect_router)
