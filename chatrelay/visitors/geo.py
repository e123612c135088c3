import ipaddress
import logging
from typing import Dict, Optional

import requests

from chatrelay.config import GEO_CONFIG

logger = logging.getLogger(__name__)


def is_public_ip(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


def lookup_location(ip: str, session: Optional[requests.Session] = None) -> Optional[Dict]:
    """Country/city/coordinates for an IP via ipapi.co, or None when unknown."""
    if not is_public_ip(ip):
        return None

    http = session or requests
    try:
        response = http.get(f"{GEO_CONFIG['API_URL'].rstrip('/')}/{ip}/json/", timeout=GEO_CONFIG["TIMEOUT"])
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("⚠️ Error getting location for %s: %s", ip, e)
        return None

    if data.get("error"):
        logger.warning("⚠️ Geolocation refused for %s: %s", ip, data.get("reason", "unknown reason"))
        return None

    return {
        "country": data.get("country_name") or "",
        "city": data.get("city") or "",
        "lat": data.get("latitude"),
        "lon": data.get("longitude"),
    }
