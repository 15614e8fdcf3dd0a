"""
Data-minimisation helpers.

Viewer IPs are hashed before they reach any table, so sessions and audit
rows can be matched per visitor without keeping the address.
"""

import hashlib
import ipaddress
from datetime import datetime, timedelta
from typing import Optional

from ..config import settings
from ..core.clock import utcnow


def normalize_ip(ip: str) -> str:
    """Canonical text form of an address; IPv4-mapped IPv6 collapses to IPv4."""
    value = (ip or "").strip().lower()
    if value.startswith("[") and "]" in value:
        value = value[1:value.index("]")]
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return value
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return str(address.ipv4_mapped)
    return str(address)


def hash_ip(ip: str, salt: Optional[str] = None) -> str:
    """Salted SHA-256 of the normalized IP address"""
    salt = settings.IP_HASH_SALT if salt is None else salt
    return hashlib.sha256((normalize_ip(ip) + salt).encode("utf-8")).hexdigest()


def retention_date(now: Optional[datetime] = None, days: Optional[int] = None) -> datetime:
    """When a session created at `now` must be deleted"""
    now = now or utcnow()
    days = settings.SESSION_RETENTION_DAYS if days is None else days
    return now + timedelta(days=days)
