"""
Location-aware tour guide chat.

Every answer is grounded in looked-up facts: the reverse-geocoded place,
nearby real POIs (AMap in China, OpenStreetMap Overpass elsewhere) and a
Wikipedia summary of the closest one. A persona template produces the reply;
when an LLM is configured it rewrites that reply from the same facts only.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote

import httpx
from geopy.distance import great_circle
from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from .GeoAgent import _finite, nominatim_user_agent
from .llm import _llm_call, _llm_configured, _safe_json_parse, bounded_history
from .PoiAgent import AmapClient, ProviderError

logger = logging.getLogger(__name__)

PERSONAS = ("expert", "humorous", "kids")

REVERSE_TTL = 60 * 10
NEARBY_TTL = 60 * 10
WIKI_TTL = 60 * 60 * 24

AMAP_RADIUS_METERS = 2000
OVERPASS_URL = "https://overpass-api.de/api/interpreter"
MAX_PLACES = 8
HISTORY_TURNS = 8
REWRITE_TEMPERATURE = 0.4

_TOILETS = re.compile(r"洗手间|厕所|卫生间|toilet|restroom|bathroom|\bwc\b", re.IGNORECASE)
_INTRO = re.compile(r"介绍|讲讲|历史|是什么|谁是|必看|看点|讲解|intro|history|tell me about|what is|must.see",
                    re.IGNORECASE)

NO_LOCATION_REPLY = (
    "I need your current location to point out real places nearby and talk "
    "about them. Please allow location access and try again."
)
NO_LOCATION_SUGGESTIONS = ["Turn on location", "I'm at the Louvre in Paris", "Take me to the nearest museum"]
TOILET_SUGGESTIONS = ["Take me to the nearest exit", "Any coffee nearby?", "Recommend a must-see exhibit"]
DEFAULT_SUGGESTIONS = [
    "What other museums are nearby?",
    "What's worth seeing here?",
    "Nearest restroom",
    "Give me an easy walking route",
]

_CITATION_NOMINATIM = {
    "title": "OpenStreetMap Nominatim Reverse Geocoding",
    "url": "https://nominatim.openstreetmap.org/",
    "source": "openstreetmap",
}
_CITATION_OVERPASS = {"title": "OpenStreetMap Overpass API", "url": "https://overpass-api.de/", "source": "openstreetmap"}
_CITATION_AMAP = {"title": "AMap POI", "url": "https://lbs.amap.com/api/webservice/summary", "source": "amap"}

_PERSONA_STYLE = {
    "kids": (
        "Style: family storytelling. Short sentences and simple words with a "
        "little playfulness; at most one emoji. Open with a hook, give 2-4 "
        "facts, end with a simple question."
    ),
    "humorous": (
        "Style: light and humorous, like chatting with a friend. Mild jokes are "
        "fine but never exaggerate or invent. Short paragraphs, no markdown "
        "lists, end with 1-2 optional next steps."
    ),
    "expert": (
        "Style: expert and in-depth. Restrained, clear and structured; prefer "
        "verifiable facts and suggest checking the official site on details. "
        "Say where the user is, introduce, add background from wiki_extract, "
        "end with one practical tip."
    ),
}

_REWRITE_SYSTEM = """\
You are a museum and city tour guide. Explain the retrieved facts clearly and \
engagingly. NEVER invent facts (addresses, opening hours, history, exhibits, \
routes, distances); use only the user's input and the supplied facts. If the \
facts are insufficient, say you are not sure and suggest checking on site or \
on the official website. Respond with strict JSON only, no markdown: \
{"reply": string, "card_description": string (optional, at most 180 characters, \
based on the facts)}. Answer in the user's language according to locale."""


def detect_intent(message: str) -> str:
    if _TOILETS.search(message):
        return "toilets"
    if _INTRO.search(message):
        return "intro"
    return "nearby"


def pick_lang(country_code: Optional[str], locale: Optional[str]) -> str:
    if (locale or "").lower().startswith("zh"):
        return "zh"
    if country_code in ("cn", "hk", "mo", "tw"):
        return "zh"
    return "en"


def format_client_time(client_time: Optional[str], now: Optional[datetime] = None) -> str:
    """'M/D HH:MM' from an ISO client timestamp, else from the server clock."""
    if client_time:
        m = re.match(r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2})", client_time)
        if m:
            return f"{int(m.group(2))}/{int(m.group(3))} {m.group(4)}:{m.group(5)}"
    now = now or datetime.now()
    return f"{now.month}/{now.day} {now:%H:%M}"


def dedupe_citations(citations: list[dict]) -> list[dict]:
    """Keep the last citation per source+url, in first-seen order."""
    by_key: dict[str, dict] = {}
    for c in citations:
        by_key[f"{c['source']}:{c['url']}"] = c
    return list(by_key.values())


def build_reply(persona: str, place_label: str, time_label: str, intent: str,
                primary: Optional[dict] = None, summary: str = "") -> str:
    dist = f"{round(primary['distanceMeters'])} m" if primary and primary.get("distanceMeters") else "nearby"
    where = f"You're at {place_label}" if place_label else "I have your current location"

    if intent == "toilets":
        if not primary:
            return ("I couldn't find a clearly marked restroom nearby in the map data. Look out "
                    "for venue signs, or tell me which entrance or hall you're in and I'll narrow it down.")
        name = primary["name"]
        if persona == "kids":
            return f"Hey there! {where}. The nearest restroom is at {name}, about {dist}. Let's walk over slowly."
        if persona == "humorous":
            return f"{where}. The hold-it-in challenge ends here! Nearest restroom: {name}, about {dist}."
        return f"{where}. The nearest restroom is {name}, about {dist} away."

    if intent == "intro":
        base = f"{where} ({time_label})."
        if not primary:
            return (f"{base} I can recommend museums and galleries nearby but couldn't get a specific "
                    "place name. Try \"take me to the nearest museum\" or type a museum's name.")
        name = primary["name"]
        if persona == "kids":
            head = f"{base} Let's get to know {name}!"
        elif persona == "humorous":
            head = f"{base} Introducing {name}! Here's the no-nonsense pitch."
        else:
            head = f"{base} Here's an introduction to {name} based on citable sources."
        body = summary or ("I couldn't find a citable encyclopedia summary yet, but I can suggest "
                           "routes and nearby places based on the map data.")
        return f"{head}\n\n{body}"

    if not primary:
        return (f"{where} ({time_label}). I can recommend real museums, galleries and landmarks "
                "nearby. Want the nearest museum or the must-see sights around you?")
    name = primary["name"]
    if persona == "kids":
        return f"{where} ({time_label}). {name} is about {dist} away. Shall we go and have a look?"
    if persona == "humorous":
        return f"{where} ({time_label}). {name} is right nearby (about {dist}). Want a legs-friendly route there?"
    return f"{where} ({time_label}). Nearby I'd recommend {name} (about {dist})."


def _overpass_query(lat: float, lng: float, kind: str) -> str:
    radius = 800 if kind == "toilets" else 1500
    selectors = [("amenity", "toilets")] if kind == "toilets" else [("tourism", "museum"), ("tourism", "gallery")]
    lines = [
        f'  {el}["{k}"="{v}"](around:{radius},{lat},{lng});'
        for k, v in selectors
        for el in ("node", "way", "relation")
    ]
    return "[out:json][timeout:12];\n(\n" + "\n".join(lines) + "\n);\nout center 25;"


def _osm_address(tags: dict) -> Optional[str]:
    if not any(tags.get(k) for k in ("addr:full", "addr:street", "contact:street", "addr:city")):
        return None
    parts = [tags.get(k) for k in ("addr:full", "addr:housenumber", "addr:street", "addr:city")]
    return " ".join(str(p) for p in parts if p) or None


class GuideService:
    """Answers one guide chat message from nearby real POIs."""

    def __init__(self, cache=None, amap: AmapClient | None = None, geocoder=None, timeout: float = 8):
        self.cache = cache
        self.amap = amap or AmapClient(cache=cache)
        self._geocoder = geocoder
        self.timeout = timeout

    @property
    def geocoder(self):
        if self._geocoder is None:
            self._geocoder = Nominatim(user_agent=nominatim_user_agent(), timeout=self.timeout)
        return self._geocoder

    def _cached(self, key: str, ttl: int, fetch):
        if self.cache is None:
            return fetch()
        return self.cache.get_or_fetch(key, fetch, ttl)

    # -- provider lookups -----------------------------------------------------

    def reverse(self, lat: float, lng: float) -> Optional[dict]:
        def fetch():
            try:
                location = self.geocoder.reverse((lat, lng), exactly_one=True, addressdetails=True, zoom=18)
            except GeopyError as exc:
                logger.warning("Reverse geocode failed: %s", exc)
                return None
            return location.raw if location is not None else None

        return self._cached(f"nominatim:reverse:{lat:.5f},{lng:.5f}", REVERSE_TTL, fetch)

    def overpass_nearby(self, lat: float, lng: float, kind: str) -> list[dict]:
        def fetch():
            try:
                resp = httpx.post(OVERPASS_URL, data={"data": _overpass_query(lat, lng, kind)}, timeout=15)
                resp.raise_for_status()
                elements = resp.json().get("elements")
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Overpass %s lookup failed: %s", kind, exc)
                return []
            return elements if isinstance(elements, list) else []

        radius = 800 if kind == "toilets" else 1500
        return self._cached(f"overpass:{kind}:{lat:.5f},{lng:.5f}:{radius}", NEARBY_TTL, fetch)

    def wiki_summary(self, name: str, lang: str) -> Optional[dict]:
        base = f"https://{lang}.wikipedia.org"

        def fetch():
            try:
                search = httpx.get(f"{base}/w/rest.php/v1/search/title",
                                   params={"q": name, "limit": 1}, timeout=self.timeout)
                search.raise_for_status()
                pages = search.json().get("pages") or []
                title = pages[0].get("title") if pages else None
                if not title:
                    return None
                resp = httpx.get(f"{base}/api/rest_v1/page/summary/{quote(title, safe='')}",
                                 timeout=self.timeout, follow_redirects=True)
                resp.raise_for_status()
                summary = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Wikipedia lookup for %r failed: %s", name, exc)
                return None
            page_url = ((summary.get("content_urls") or {}).get("desktop") or {}).get("page")
            return {
                "title": str(summary.get("title") or title),
                "extract": str(summary.get("extract") or ""),
                "url": str(page_url or f"{base}/wiki/{quote(title, safe='')}"),
                "thumbnail": (summary.get("thumbnail") or {}).get("source"),
            }

        return self._cached(f"wiki:{lang}:summary:{name}", WIKI_TTL, fetch)

    def nearby_places(self, lat: float, lng: float, country_code: Optional[str],
                      toilets: bool) -> tuple[list[dict], dict]:
        """Up to MAX_PLACES nearby POIs and the citation for their source."""
        center = (lat, lng)
        if country_code == "cn" and self.amap.configured:
            try:
                pois = self.amap.place_around(lat, lng, "洗手间" if toilets else "博物馆",
                                              radius=AMAP_RADIUS_METERS, ttl=NEARBY_TTL)
            except ProviderError as exc:
                logger.warning("AMap nearby lookup failed: %s", exc)
                pois = []
            places = []
            for p in pois:
                if not isinstance(p, dict):
                    continue
                lng_str, _, lat_str = str(p.get("location") or "").partition(",")
                p_lat, p_lng = _finite(lat_str), _finite(lng_str)
                name = str(p.get("name") or "").strip()
                if p_lat is None or p_lng is None or not name:
                    continue
                distance = _finite(p.get("distance"))
                if distance is None:
                    distance = great_circle(center, (p_lat, p_lng)).meters
                places.append({
                    "id": str(p["id"]) if p.get("id") else None,
                    "name": name,
                    "lat": p_lat,
                    "lng": p_lng,
                    "address": p["address"] if isinstance(p.get("address"), str) and p["address"] else None,
                    "distanceMeters": distance,
                    "source": "amap",
                    "category": p["type"] if isinstance(p.get("type"), str) and p["type"] else None,
                })
            return places[:MAX_PLACES], _CITATION_AMAP

        places = []
        for el in self.overpass_nearby(lat, lng, "toilets" if toilets else "museum"):
            center_el = el.get("center") or {}
            el_lat = _finite(el.get("lat", center_el.get("lat")))
            el_lng = _finite(el.get("lon", center_el.get("lon")))
            tags = el.get("tags") or {}
            name = str(tags.get("name") or "").strip()
            if el_lat is None or el_lng is None or not name:
                continue
            places.append({
                "id": str(el["id"]) if el.get("id") else None,
                "name": name,
                "lat": el_lat,
                "lng": el_lng,
                "address": _osm_address(tags),
                "distanceMeters": great_circle(center, (el_lat, el_lng)).meters,
                "source": "openstreetmap",
                "category": tags.get("tourism") or tags.get("amenity"),
            })
        places.sort(key=lambda p: p["distanceMeters"] or 0)
        return places[:MAX_PLACES], _CITATION_OVERPASS

    # -- LLM ------------------------------------------------------------------

    def rewrite(self, *, persona: str, locale: Optional[str], message: str, history: Any,
                place_label: str, time_label: str, primary: Optional[dict], places: list[dict],
                wiki_extract: str, citations: list[dict], context: Optional[dict]) -> Optional[dict]:
        """Persona rewrite of the template reply; None when unavailable or unusable."""
        if not _llm_configured():
            return None
        facts = {
            "locale": locale or "en",
            "persona": persona,
            "user_message": message,
            "context": context or {},
            "location_display": place_label,
            "client_time": time_label,
            "primary_place": {k: primary.get(k) for k in ("name", "address", "distanceMeters", "source")}
            if primary else None,
            "nearby_places": [
                {k: p.get(k) for k in ("name", "address", "distanceMeters", "source", "category")}
                for p in places[:MAX_PLACES]
            ],
            "wiki_extract": wiki_extract,
            "citations": citations,
            "constraints": {"do_not_invent_facts": True, "keep_reply_under_chars": 800},
        }
        try:
            raw = _llm_call(
                [
                    {"role": "system", "content": f"{_REWRITE_SYSTEM}\n{_PERSONA_STYLE[persona]}"},
                    *bounded_history(history, HISTORY_TURNS),
                    {"role": "user", "content": json.dumps(facts, ensure_ascii=False)},
                ],
                temperature=REWRITE_TEMPERATURE,
            )
            parsed = _safe_json_parse(raw)
        except Exception as exc:
            logger.warning("Guide rewrite failed: %s", exc)
            return None
        if not isinstance(parsed, dict):
            return None
        reply = parsed.get("reply")
        if not isinstance(reply, str) or not reply.strip():
            return None
        card_description = parsed.get("card_description")
        return {
            "reply": reply.strip(),
            "card_description": card_description.strip() if isinstance(card_description, str) else "",
        }

    # -- entry point ----------------------------------------------------------

    def answer(self, message: str, *, persona: str = "expert", location: Optional[dict] = None,
               history: Any = None, client_time: Optional[str] = None, locale: Optional[str] = None,
               context: Optional[dict] = None) -> dict:
        message = (message or "").strip()
        if not message:
            raise ValueError("message is required")
        if persona not in PERSONAS:
            persona = "expert"

        lat = _finite((location or {}).get("lat"))
        lng = _finite((location or {}).get("lng"))
        if lat is None or lng is None:
            return {"reply": NO_LOCATION_REPLY, "citations": [], "suggestions": NO_LOCATION_SUGGESTIONS}

        time_label = format_client_time(client_time)
        reverse = self.reverse(lat, lng) or {}
        address = reverse.get("address") or {}
        country_code = str(address["country_code"]) if address.get("country_code") else None
        display_name = str(reverse.get("display_name") or "")
        place_label = ", ".join(p.strip() for p in display_name.split(",")[:3] if p.strip())
        lang = pick_lang(country_code, locale)
        intent = detect_intent(message)
        toilets = intent == "toilets"

        citations: list[dict] = [_CITATION_NOMINATIM] if place_label else []
        places, source_citation = self.nearby_places(lat, lng, country_code, toilets)
        citations.append(source_citation)

        primary = places[0] if places else None
        card = None
        summary = ""
        if primary and not toilets:
            subtitle = primary.get("address") or primary.get("category") or "Nearby place"
            wiki = self.wiki_summary(primary["name"], lang)
            if wiki and wiki.get("extract"):
                summary = wiki["extract"]
                citations.append({"title": wiki["title"], "url": wiki["url"], "source": "wikipedia"})
                card = {
                    "title": primary["name"],
                    "subtitle": subtitle,
                    "description": summary,
                    "tags": ["Real POI", "Wikipedia"],
                    "image": wiki.get("thumbnail"),
                    "location": [primary["lat"], primary["lng"]],
                }
            else:
                card = {
                    "title": primary["name"],
                    "subtitle": subtitle,
                    "description": ("Located from real map data. Ask me about its history, "
                                    "highlights, or how to get there from here."),
                    "tags": ["Real POI"],
                    "location": [primary["lat"], primary["lng"]],
                }

        reply = build_reply(persona, place_label, time_label, intent, primary, summary)
        rewritten = self.rewrite(
            persona=persona, locale=locale, message=message, history=history,
            place_label=place_label, time_label=time_label, primary=primary, places=places,
            wiki_extract=summary, citations=citations, context=context,
        )
        if rewritten:
            reply = rewritten["reply"]
            if card and rewritten["card_description"]:
                card = {**card, "description": rewritten["card_description"]}

        response = {
            "reply": reply,
            "citations": dedupe_citations(citations),
            "suggestions": TOILET_SUGGESTIONS if toilets else DEFAULT_SUGGESTIONS,
            "places": places,
        }
        if card:
            response["card"] = card
        return response
