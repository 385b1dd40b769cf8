"""
AMap (Gaode) Web Service integration for POI candidate collection.

Collects a bounded, de-duplicated pool of real points of interest for a
destination. The pool is the ground truth that every itinerary item is
validated against later on.

Failures are reported as a ProviderResult rather than raised, so callers
decide explicitly which fallback tier to use:

    result = PoiCollector(cache).collect("Chengdu", ["history"])
    candidates = result.value if result.ok else []
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

import requests

from .categories import DEFAULT_CLASSIFIER, CategoryClassifier, build_keywords
from .models import SOURCE_AMAP, Coordinates, PoiCandidate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_AMAP_BASE = "https://restapi.amap.com/v3"

MAX_CANDIDATES = 90
MAX_KEYWORDS = 18
RESULTS_PER_KEYWORD = 20
HTTP_TIMEOUT = 8

GEOCODE_TTL = 60 * 30
SEARCH_TTL = 60 * 30


def _get_amap_key() -> str:
    """Read the key lazily so that dotenv has loaded by the time we need it."""
    return (os.getenv("AMAP_KEY") or os.getenv("AMAP_WEB_KEY") or "").strip()


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

class ProviderError(Exception):
    """A POI/geocoding provider could not be used.

    kind: "unconfigured" | "unavailable" | "malformed"
    """

    def __init__(self, kind: str, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind


@dataclass
class ProviderResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ProviderResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: str, message: str = "") -> "ProviderResult[T]":
        return cls(error=ProviderError(kind, message))


# ---------------------------------------------------------------------------
# AMap client
# ---------------------------------------------------------------------------

def parse_lng_lat(location: Any) -> Optional[Coordinates]:
    """Parse AMap's "lng,lat" string into Coordinates."""
    if not location or not isinstance(location, str):
        return None
    parts = location.split(",")
    if len(parts) != 2:
        return None
    try:
        lng, lat = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lng) and math.isfinite(lat)):
        return None
    return Coordinates(lat=lat, lng=lng)


class AmapClient:
    """Thin AMap REST client. Raises ProviderError on any failure."""

    def __init__(self, key: str | None = None, cache=None, timeout: float = HTTP_TIMEOUT):
        self._key = key
        self.cache = cache
        self.timeout = timeout

    @property
    def key(self) -> str:
        return self._key if self._key is not None else _get_amap_key()

    @property
    def configured(self) -> bool:
        return bool(self.key)

    def _get(self, path: str, params: dict) -> dict:
        if not self.configured:
            raise ProviderError("unconfigured", "AMAP_KEY is not set")
        try:
            resp = requests.get(
                f"{_AMAP_BASE}/{path}",
                params={"key": self.key, **params},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderError("unavailable", f"AMap {path}: {exc}") from exc
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError("malformed", f"AMap {path}: invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError("malformed", f"AMap {path}: unexpected payload")
        if str(data.get("status", "1")) == "0":
            raise ProviderError("unavailable", f"AMap {path}: {data.get('info', 'error')}")
        return data

    def _cached(self, key: str, ttl: int, fetch):
        if self.cache is None:
            return fetch()
        return self.cache.get_or_fetch(key, fetch, ttl)

    def place_text(self, keywords: str, city: str | None = None, *, page: int = 1,
                   offset: int = RESULTS_PER_KEYWORD, citylimit: bool = True) -> list[dict]:
        params = {
            "keywords": keywords,
            "citylimit": "true" if citylimit else "false",
            "extensions": "all",
            "offset": str(offset),
            "page": str(page),
        }
        if city:
            params["city"] = city

        def fetch():
            pois = self._get("place/text", params).get("pois")
            return pois if isinstance(pois, list) else []

        cache_key = f"amap:text:{keywords}:{city or ''}:{offset}:{page}:{int(citylimit)}"
        return self._cached(cache_key, SEARCH_TTL, fetch)

    def place_around(self, lat: float, lng: float, keywords: str, *, radius: int,
                     offset: int = 20, ttl: int = 600) -> list[dict]:
        params = {
            "location": f"{lng},{lat}",
            "radius": str(radius),
            "keywords": keywords,
            "sortrule": "distance",
            "offset": str(offset),
            "page": "1",
            "extensions": "all",
        }

        def fetch():
            pois = self._get("place/around", params).get("pois")
            return pois if isinstance(pois, list) else []

        cache_key = f"amap:around:{keywords}:{lat:.5f},{lng:.5f}:{radius}:{offset}"
        return self._cached(cache_key, ttl, fetch)

    def geocode(self, address: str) -> Optional[dict]:
        def fetch():
            geos = self._get("geocode/geo", {"address": address}).get("geocodes")
            return geos[0] if isinstance(geos, list) and geos else None

        return self._cached(f"amap:geocode:{address}", GEOCODE_TTL, fetch)

    def ip_locate(self, ip: str | None) -> dict:
        params = {"ip": ip} if ip else {}
        return self._get("ip", params)


# ---------------------------------------------------------------------------
# Candidate collector
# ---------------------------------------------------------------------------

def to_candidate(poi: Any) -> Optional[PoiCandidate]:
    """Map one raw AMap POI to a PoiCandidate; None when id or name is missing."""
    if not isinstance(poi, dict):
        return None
    poi_id = str(poi.get("id") or "").strip()
    name = str(poi.get("name") or "").strip()
    if not poi_id or not name:
        return None
    # AMap returns [] instead of "" for empty string fields
    category = poi.get("type")
    address = poi.get("address")
    return PoiCandidate(
        poi_id=poi_id,
        name=name,
        category=str(category) if category and isinstance(category, str) else None,
        address=str(address) if address and isinstance(address, str) else None,
        location=parse_lng_lat(poi.get("location")),
        source=SOURCE_AMAP,
    )


class PoiCollector:
    """Collects the candidate pool for one itinerary request."""

    def __init__(self, cache=None, client: AmapClient | None = None,
                 classifier: CategoryClassifier | None = None,
                 max_candidates: int = MAX_CANDIDATES, max_keywords: int = MAX_KEYWORDS):
        self.client = client or AmapClient(cache=cache)
        self.classifier = classifier or DEFAULT_CLASSIFIER
        self.max_candidates = max_candidates
        self.max_keywords = max_keywords

    def _resolve_city(self, destination: str) -> Optional[str]:
        try:
            geo = self.client.geocode(destination)
        except ProviderError as exc:
            logger.info("Geocode for %r failed, searching without city scope: %s", destination, exc)
            return None
        if not isinstance(geo, dict):
            return None
        city = geo.get("citycode") or geo.get("city")
        return city if city and isinstance(city, str) else None

    def collect(self, destination: str, preferences: list[str] | None = None
                ) -> ProviderResult[list[PoiCandidate]]:
        if not self.client.configured:
            return ProviderResult.failure("unconfigured", "AMAP_KEY is not set")

        city = self._resolve_city(destination)
        keywords = build_keywords(preferences or [], self.classifier, self.max_keywords)

        candidates: list[PoiCandidate] = []
        seen: set[str] = set()
        searched = 0
        last_error: ProviderError | None = None

        for kw in keywords:
            try:
                pois = self.client.place_text(f"{destination} {kw}".strip(), city)
            except ProviderError as exc:
                logger.warning("AMap search for %r failed: %s", kw, exc)
                last_error = exc
                continue
            searched += 1
            for raw in pois:
                poi = to_candidate(raw)
                if poi is None or poi.poi_id in seen:
                    continue
                seen.add(poi.poi_id)
                candidates.append(poi)
                if len(candidates) >= self.max_candidates:
                    break
            if len(candidates) >= self.max_candidates:
                break

        if searched == 0 and last_error is not None:
            return ProviderResult(error=last_error)

        logger.info("Collected %d POI candidates for %r (%d keywords searched)",
                 len(candidates), destination, searched)
        return ProviderResult.success(candidates)


def collect_poi_candidates(destination: str, preferences: list[str] | None = None,
                           cache=None) -> ProviderResult[list[PoiCandidate]]:
    return PoiCollector(cache=cache).collect(destination, preferences)
