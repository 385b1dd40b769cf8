"""
Repair/normalize untrusted itinerary JSON against the candidate pool.

Model output is coerced field by field into an ItineraryResponse. Every
surviving item is grounded: its facts come from the candidate it references
(by poiId, else by exact name) and anything that cannot be grounded is
dropped. An itinerary left with no items at all is replaced by the fallback.

Running the repair on its own output with the same pool changes nothing.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from PlanningInfo import PlanningInfo

from .fallback import SOURCE_TIP
from .models import (
    SLOT_NAMES,
    SLOT_TITLES,
    SOURCE_AMAP,
    Coordinates,
    FoodMap,
    ItineraryDay,
    ItineraryItem,
    ItineraryResponse,
    ItinerarySlot,
    PoiCandidate,
)

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_SLOT = 3

DEFAULT_CITY_INTRO = "A trip plan built from real places; keep chatting to adjust it."
DEFAULT_TIP = "Check opening hours and booking rules before you go."


@dataclass(frozen=True)
class RepairResult:
    itinerary: ItineraryResponse
    dropped_items: int = 0
    used_fallback: bool = False


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _opt_str(value: Any) -> Optional[str]:
    return _str(value) or None


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [s for s in (_str(v) for v in value) if s]


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def _coordinates(value: Any) -> Optional[Coordinates]:
    if not isinstance(value, dict):
        return None
    lat, lng = _number(value.get("lat")), _number(value.get("lng"))
    if lat is None or lng is None:
        return None
    return Coordinates(lat=lat, lng=lng)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


def _food_map(value: Any) -> FoodMap:
    raw = value if isinstance(value, dict) else {}
    return FoodMap(
        hotpot=_str_list(raw.get("hotpot")),
        local_cuisine=_str_list(raw.get("localCuisine")),
        snacks=_str_list(raw.get("snacks")),
        streets=_str_list(raw.get("streets")),
        coffee_dessert=_str_list(raw.get("coffeeDessert")),
    )


def _item(value: Any) -> Optional[ItineraryItem]:
    if not isinstance(value, dict):
        return None
    name = _str(value.get("name"))
    if not name:
        return None
    return ItineraryItem(
        name=name,
        poi_id=_opt_str(value.get("poiId")),
        category=_opt_str(value.get("category")),
        estimated_duration_hours=_number(value.get("estimatedDurationHours")),
        tag=_opt_str(value.get("tag")),
        address=_opt_str(value.get("address")),
        location=_coordinates(value.get("location")),
        source=_opt_str(value.get("source")),
    )


# ---------------------------------------------------------------------------
# Normalize
# ---------------------------------------------------------------------------

def normalize_itinerary(raw: Any, info: PlanningInfo) -> ItineraryResponse:
    """Coerce arbitrary JSON into an ItineraryResponse with exactly info.days days.

    Items are only checked for a non-empty name here; grounding happens in
    repair_itinerary.
    """
    data = raw if isinstance(raw, dict) else {}
    raw_days = data.get("days") if isinstance(data.get("days"), list) else []

    days = []
    for i in range(info.days):
        src = raw_days[i] if i < len(raw_days) and isinstance(raw_days[i], dict) else {}
        slots = {}
        for name in SLOT_NAMES:
            raw_slot = src.get(name) if isinstance(src.get(name), dict) else {}
            raw_items = raw_slot.get("items") if isinstance(raw_slot.get("items"), list) else []
            items = [it for it in (_item(v) for v in raw_items) if it is not None]
            slots[name] = ItinerarySlot(
                title=_str(raw_slot.get("title")) or SLOT_TITLES[name],
                items=items[:MAX_ITEMS_PER_SLOT],
            )
        days.append(ItineraryDay(
            date=_str(src.get("date")) or info.day_date(i),
            title=_str(src.get("title")) or f"Day {i + 1}",
            **slots,
        ))

    return ItineraryResponse(
        title=_str(data.get("title")) or info.title(),
        destination=_str(data.get("destination")) or info.destination,
        city_intro=_str(data.get("cityIntro")) or DEFAULT_CITY_INTRO,
        overview=_opt_str(data.get("overview")),
        days=days,
        food_map=_food_map(data.get("foodMap")),
        tips=_unique(_str_list(data.get("tips"))) or [DEFAULT_TIP],
    )


# ---------------------------------------------------------------------------
# Ground
# ---------------------------------------------------------------------------

def _ground(item: ItineraryItem, by_id: dict[str, PoiCandidate],
            by_name: dict[str, PoiCandidate]) -> Optional[ItineraryItem]:
    poi = by_id.get(item.poi_id) if item.poi_id else None
    if poi is None:
        poi = by_name.get(item.name)
    if poi is None:
        return None
    return ItineraryItem(
        name=poi.name,
        poi_id=poi.poi_id,
        category=poi.category,
        estimated_duration_hours=item.estimated_duration_hours,
        tag=item.tag,
        address=poi.address,
        location=poi.location,
        source=SOURCE_AMAP,
    )


def repair_itinerary(raw: Any, info: PlanningInfo, candidates: list[PoiCandidate],
                     fallback: ItineraryResponse) -> RepairResult:
    """Normalize ``raw`` and keep only items grounded in ``candidates``.

    ``raw`` may be model JSON or an ItineraryResponse. ``fallback`` replaces
    the result when no item survives.
    """
    if isinstance(raw, ItineraryResponse):
        raw = raw.to_dict()
    itinerary = normalize_itinerary(raw, info)

    by_id = {c.poi_id: c for c in candidates}
    by_name: dict[str, PoiCandidate] = {}
    for c in candidates:
        by_name.setdefault(c.name, c)

    dropped = 0
    days = []
    for day in itinerary.days:
        slots = {}
        for name, slot in zip(SLOT_NAMES, day.slots()):
            kept = []
            for item in slot.items:
                grounded = _ground(item, by_id, by_name)
                if grounded is None:
                    dropped += 1
                    continue
                kept.append(grounded)
            slots[name] = ItinerarySlot(title=slot.title, items=kept[:MAX_ITEMS_PER_SLOT])
        days.append(ItineraryDay(date=day.date, title=day.title, **slots))

    if dropped:
        logger.info("Repair dropped %d ungrounded item(s) for %r", dropped, info.destination)

    if not any(d.item_count() for d in days):
        logger.warning("No grounded items left for %r, using fallback plan", info.destination)
        return RepairResult(itinerary=fallback, dropped_items=dropped, used_fallback=True)

    tips = _unique([*itinerary.tips, SOURCE_TIP]) if candidates else itinerary.tips
    repaired = ItineraryResponse(
        title=itinerary.title,
        destination=itinerary.destination,
        city_intro=itinerary.city_intro,
        overview=itinerary.overview,
        days=days,
        food_map=itinerary.food_map,
        tips=tips,
    )
    return RepairResult(itinerary=repaired, dropped_items=dropped)
