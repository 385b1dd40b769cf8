"""
Geo lookups for the client map: coarse IP location, nearby museums and
free-text place search.

Inside mainland China (and with an AMap key) AMap is used, since
OpenStreetMap coverage there is thin; everywhere else Nominatim via geopy.
AMap results are mapped to Nominatim-shaped records so the client handles a
single format.
"""

from __future__ import annotations

import logging
import math
import os
import re
from typing import Any, Optional

from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from .PoiAgent import AmapClient, ProviderError

logger = logging.getLogger(__name__)

IP_TTL = 60 * 10
NEARBY_TTL = 60 * 10
PLACES_TTL = 60 * 30

NEARBY_RADIUS_METERS = 30000
NEARBY_BOX_DEGREES = 0.2
NEARBY_MUSEUM_KEYWORDS = "博物馆|美术馆|展览馆"
DEFAULT_LANGUAGE = "zh-CN,en"

_CJK = re.compile(r"[一-龥]")


def is_in_china(lat: float, lng: float) -> bool:
    return 18 <= lat <= 54 and 73 <= lng <= 135


def clamp_limit(limit: Any, default: int) -> int:
    try:
        value = int(limit or default)
    except (TypeError, ValueError):
        value = default
    return max(1, min(25, value))


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _amap_str(value: Any) -> str:
    # AMap returns [] instead of "" for empty string fields
    return str(value) if value and not isinstance(value, list) else ""


def nominatim_user_agent() -> str:
    return os.getenv("NOMINATIM_USER_AGENT", "museum-guide-api")


def amap_to_nominatim(poi: Any) -> Optional[dict]:
    """Map an AMap POI to a Nominatim-like search record."""
    if not isinstance(poi, dict):
        return None
    lng_str, _, lat_str = str(poi.get("location") or "").partition(",")
    lat, lng = _finite(lat_str), _finite(lng_str)
    if lat is None or lng is None:
        return None
    name = str(poi.get("name") or "").strip()
    if not name:
        return None
    parts = [name]
    for key in ("address", "adname", "cityname"):
        value = poi.get(key)
        if isinstance(value, str) and value.strip():
            parts.append(value.strip())
    poi_id = str(poi["id"]) if poi.get("id") else f"{lat},{lng}"
    return {
        "place_id": f"amap-{poi_id}",
        "lat": str(lat),
        "lon": str(lng),
        "name": name,
        "display_name": ", ".join(parts),
        "class": "amenity",
        "type": "museum",
    }


def parse_rectangle(rect: str) -> Optional[dict]:
    """Center of an AMap "lng1,lat1;lng2,lat2" rectangle."""
    corners = [p.strip() for p in rect.split(";") if p.strip()]
    if len(corners) < 2:
        return None
    nums = [_finite(v) for c in corners[:2] for v in c.split(",")[:2]]
    if len(nums) != 4 or any(n is None for n in nums):
        return None
    lng1, lat1, lng2, lat2 = nums
    return {"lat": (lat1 + lat2) / 2, "lng": (lng1 + lng2) / 2}


class GeoService:
    """IP locate / nearby museums / place search with cached provider lookups."""

    def __init__(self, cache=None, amap: AmapClient | None = None, geocoder=None):
        self.cache = cache
        self.amap = amap or AmapClient()
        self._geocoder = geocoder

    @property
    def geocoder(self):
        if self._geocoder is None:
            self._geocoder = Nominatim(user_agent=nominatim_user_agent(), timeout=12)
        return self._geocoder

    def _cached(self, key: str, ttl: int, fetch):
        if self.cache is None:
            return fetch()
        return self.cache.get_or_fetch(key, fetch, ttl)

    def _nominatim_search(self, q: str, limit: int, language: str,
                          viewbox: Optional[list] = None, bounded: bool = False) -> list[dict]:
        try:
            locations = self.geocoder.geocode(
                q,
                exactly_one=False,
                limit=limit,
                addressdetails=True,
                extratags=True,
                namedetails=True,
                language=language,
                viewbox=viewbox,
                bounded=bounded,
            )
        except GeopyError as exc:
            logger.warning("Nominatim search for %r failed: %s", q, exc)
            return []
        return [loc.raw for loc in locations or []]

    # -- actions -------------------------------------------------------------

    def ip_locate(self, ip: Optional[str]) -> Optional[dict]:
        """Coarse location for ``ip`` (or the caller's address), None without AMap."""
        if not self.amap.configured:
            return None

        def fetch():
            try:
                data = self.amap.ip_locate(ip)
            except ProviderError as exc:
                logger.warning("AMap IP locate failed: %s", exc)
                return None
            rect = data.get("rectangle") if isinstance(data.get("rectangle"), str) else ""
            return {
                "ip": ip or None,
                "province": _amap_str(data.get("province")),
                "city": _amap_str(data.get("city")),
                "adcode": _amap_str(data.get("adcode")),
                "rectangle": rect,
                "center": parse_rectangle(rect),
            }

        return self._cached(f"geo:ip_locate:{ip or 'na'}", IP_TTL, fetch)

    def search_nearby_museums(self, lat: Any, lng: Any, limit: Any = 20) -> list[dict]:
        lat, lng = _finite(lat), _finite(lng)
        if lat is None or lng is None:
            raise ValueError("lat/lng required")
        limit = clamp_limit(limit, 20)

        def fetch():
            if is_in_china(lat, lng) and self.amap.configured:
                try:
                    pois = self.amap.place_around(lat, lng, NEARBY_MUSEUM_KEYWORDS,
                                                  radius=NEARBY_RADIUS_METERS, offset=limit)
                except ProviderError as exc:
                    logger.warning("AMap nearby museums failed: %s", exc)
                    return []
                return [r for r in (amap_to_nominatim(p) for p in pois) if r]
            d = NEARBY_BOX_DEGREES
            return self._nominatim_search(
                "museum", limit, DEFAULT_LANGUAGE,
                viewbox=[(lat + d, lng - d), (lat - d, lng + d)], bounded=True,
            )

        return self._cached(f"geo:nearby_museums:{lat:.5f},{lng:.5f}:{limit}", NEARBY_TTL, fetch)

    def search_places(self, q: str, limit: Any = 10, accept_language: Optional[str] = None,
                      viewbox: Optional[dict] = None, bounded: bool = False) -> list[dict]:
        q = (q or "").strip()
        if not q:
            return []
        limit = clamp_limit(limit, 10)

        box = None
        if isinstance(viewbox, dict):
            west, south, east, north = (_finite(viewbox.get(k)) for k in ("west", "south", "east", "north"))
            if None not in (west, south, east, north):
                box = [(north, west), (south, east)]
        bounded = bool(bounded and box)
        box_key = f"{box[0][1]},{box[0][0]},{box[1][1]},{box[1][0]}" if box else ""
        language = accept_language or DEFAULT_LANGUAGE

        def fetch():
            if self.amap.configured and _CJK.search(q):
                try:
                    pois = self.amap.place_text(q, None, offset=limit, citylimit=False)
                except ProviderError as exc:
                    logger.warning("AMap place search for %r failed: %s", q, exc)
                    return []
                return [r for r in (amap_to_nominatim(p) for p in pois) if r]
            return self._nominatim_search(q, limit, language, viewbox=box, bounded=bounded)

        cache_key = f"geo:search_places:{q}:{limit}:{accept_language or ''}:{box_key}:{int(bounded)}"
        return self._cached(cache_key, PLACES_TTL, fetch)
