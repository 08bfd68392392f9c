"""
Click enrichment: derive geo + device + browser for a click event.

Runs inside the aggregator, never on the redirect path. Every lookup is
best-effort: a missing GeoIP database, a private address, an unparseable
user agent or a library error all end up as "Unknown" (stored as NULL).
Failures are logged as derivation_failed and never propagate.

Sources:
  - Geo: MaxMind GeoLite2-City via geoip2 (reader opened lazily in a thread)
  - Device/browser: user_agents (ua-parser)
"""

import asyncio
import ipaddress
from dataclasses import dataclass

import geoip2.database
import geoip2.errors
import maxminddb
from user_agents import parse as parse_ua

from linkpulse.errors import DerivationFailure

import structlog

logger = structlog.get_logger()

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class GeoInfo:
    country: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class DeviceInfo:
    device: str | None = None
    browser: str | None = None


@dataclass(frozen=True)
class DerivedFields:
    country: str | None = None
    city: str | None = None
    device: str | None = None
    browser: str | None = None


def _is_public_ip(ip: str | None) -> bool:
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


# --- Geo ---

class GeoIPLookup:
    """ip → country/city. Returns empty GeoInfo when nothing is known."""

    def __init__(self, city_db_path: str | None):
        self._city_db_path = city_db_path
        self._reader: geoip2.database.Reader | None = None
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _get_reader(self) -> geoip2.database.Reader | None:
        if not self._loaded:
            async with self._lock:
                if not self._loaded:
                    if self._city_db_path:
                        try:
                            self._reader = await asyncio.to_thread(
                                geoip2.database.Reader, self._city_db_path
                            )
                        except (OSError, maxminddb.InvalidDatabaseError) as e:
                            logger.warning("geoip_db_unavailable", path=self._city_db_path,
                                           error=str(e), error_type=type(e).__name__)
                            self._reader = None
                    self._loaded = True
        return self._reader

    async def lookup(self, ip: str | None) -> GeoInfo:
        if not _is_public_ip(ip):
            return GeoInfo()
        reader = await self._get_reader()
        if reader is None:
            return GeoInfo()
        try:
            result = await asyncio.to_thread(reader.city, ip)
        except geoip2.errors.AddressNotFoundError:
            return GeoInfo()
        except (ValueError, maxminddb.InvalidDatabaseError) as e:
            raise DerivationFailure(f"geoip lookup failed: {e}") from e
        return GeoInfo(country=result.country.name or None, city=result.city.name or None)

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
        self._reader = None
        self._loaded = False


# --- User agent ---

def parse_user_agent(ua_string: str | None) -> DeviceInfo:
    """ua string → device class + browser family."""
    if not ua_string or not ua_string.strip():
        return DeviceInfo()

    try:
        parsed = parse_ua(ua_string)
    except Exception as e:
        raise DerivationFailure(f"user agent parse failed: {e}") from e

    if parsed.is_bot:
        device = "Bot"
    elif parsed.is_tablet:
        device = "Tablet"
    elif parsed.is_mobile:
        device = "Mobile"
    elif parsed.is_pc:
        device = "Desktop"
    else:
        device = "Other"

    browser = parsed.browser.family
    if not browser or browser == "Other":
        browser = None

    return DeviceInfo(device=device, browser=browser)


# --- Main Entry Point ---

class ClickEnricher:
    def __init__(self, geoip: GeoIPLookup):
        self.geoip = geoip

    async def derive(self, ip: str | None, user_agent: str | None) -> DerivedFields:
        """Never raises: each half degrades to Unknown on its own."""
        try:
            geo = await self.geoip.lookup(ip)
        except DerivationFailure as e:
            logger.warning("derivation_failed", kind="geo", error=e.message)
            geo = GeoInfo()

        try:
            dev = parse_user_agent(user_agent)
        except DerivationFailure as e:
            logger.warning("derivation_failed", kind="user_agent", error=e.message)
            dev = DeviceInfo()

        return DerivedFields(country=geo.country, city=geo.city,
                             device=dev.device, browser=dev.browser)

    def close(self) -> None:
        self.geoip.close()
