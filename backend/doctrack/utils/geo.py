import ipaddress
import logging
from functools import lru_cache
from typing import Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


def is_private_ip(ip: str) -> bool:
    """Check if IP address is private/local or not an IP at all"""
    if not ip:
        return True
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved


# LRU cache for geo data (max 10000 entries)
@lru_cache(maxsize=10000)
def _get_country_cached(ip: str) -> Optional[str]:
    """
    Get the ISO country code from ip-api.com with caching.
    Only the country is requested; the IP itself is never persisted.
    """
    try:
        with httpx.Client(timeout=settings.GEOIP_TIMEOUT) as client:
            response = client.get(
                f"http://ip-api.com/json/{ip}",
                params={"fields": "status,countryCode"}
            )

            if response.status_code == 200:
                data = response.json()
                if data.get("status") == "success":
                    return data.get("countryCode")
    except httpx.HTTPError as e:
        logger.debug("Geo lookup failed: %s", e)

    return None


def get_country(ip: str) -> Optional[str]:
    """
    Coarse country for an IP address.
    Uses ip-api.com (free, 45 req/min limit); private addresses are skipped.
    """
    if not settings.GEOIP_ENABLED or is_private_ip(ip):
        return None
    return _get_country_cached(ip)
