"""
Deterministic itinerary builders (no LLM involved).

Two tiers:
  build_poi_itinerary        - greedy slot assignment from the candidate pool
  build_synthetic_itinerary  - destination-templated placeholders, used when
                               the pool is empty; the floor of the
                               degradation chain
"""

from __future__ import annotations

from typing import Callable, Optional

from PlanningInfo import PlanningInfo

from .categories import DEFAULT_CLASSIFIER, CategoryClassifier
from .models import (
    SLOT_TITLES,
    FoodMap,
    ItineraryDay,
    ItineraryItem,
    ItineraryResponse,
    ItinerarySlot,
    PoiCandidate,
)

FOOD_BUCKET_LIMIT = 6
FOOD_POOL_LIMIT = 20

SOURCE_TIP = "Data source: AMap POI search."
REPLACE_TIP = "If a place is closed or the queue is long, ask in the chat and I'll swap in a similar spot nearby."
FALLBACK_TIP = "Basic plan enabled: keep chatting to refine it or adjust it by hand."

# (hours, tag) per slot
_SLOT_DEFAULTS = {
    "morning": (3, "Must see"),
    "afternoon": (2.5, "Stroll"),
    "night": (2, "Food"),
}


def _destination(info: PlanningInfo) -> str:
    return info.destination or "Destination"


def _pick_first(candidates: list[PoiCandidate], matcher: Callable[[PoiCandidate], bool],
                used: set[str]) -> Optional[PoiCandidate]:
    for poi in candidates:
        if poi.poi_id in used or not matcher(poi):
            continue
        used.add(poi.poi_id)
        return poi
    return None


def _slot(name: str, poi: Optional[PoiCandidate]) -> ItinerarySlot:
    hours, tag = _SLOT_DEFAULTS[name]
    items = [ItineraryItem.from_candidate(poi, hours=hours, tag=tag)] if poi else []
    return ItinerarySlot(title=SLOT_TITLES[name], items=items)


def build_food_map(candidates: list[PoiCandidate],
                   classifier: CategoryClassifier = DEFAULT_CLASSIFIER) -> FoodMap:
    food_like = [p.name for p in candidates if classifier.is_food(p)][:FOOD_POOL_LIMIT]

    def bucket(rx) -> list[str]:
        return [n for n in food_like if rx.search(n)][:FOOD_BUCKET_LIMIT]

    return FoodMap(
        hotpot=bucket(classifier.hotpot),
        local_cuisine=bucket(classifier.local_cuisine),
        snacks=bucket(classifier.snacks),
        streets=[p.name for p in candidates if classifier.streets.search(p.name)][:FOOD_BUCKET_LIMIT],
        coffee_dessert=bucket(classifier.coffee_dessert),
    )


def build_poi_itinerary(info: PlanningInfo, candidates: list[PoiCandidate],
                        classifier: CategoryClassifier = DEFAULT_CLASSIFIER) -> ItineraryResponse:
    """Assign candidates to slots day by day, each candidate at most once.

    Every slot first takes the first unused candidate matching its pattern
    (museum / walk / food); slots still vacant then take any unused
    candidate. An exhausted pool leaves the slot empty.
    """
    destination = _destination(info)
    used: set[str] = set()
    matchers = {
        "morning": classifier.is_museum,
        "afternoon": classifier.is_walk,
        "night": classifier.is_food,
    }

    days: list[ItineraryDay] = []
    for i in range(info.days):
        picks = {name: _pick_first(candidates, match, used) for name, match in matchers.items()}
        for name in matchers:
            if picks[name] is None:
                picks[name] = _pick_first(candidates, lambda _p: True, used)
        days.append(ItineraryDay(
            date=info.day_date(i, default_today=True),
            title=f"Day {i + 1}",
            morning=_slot("morning", picks["morning"]),
            afternoon=_slot("afternoon", picks["afternoon"]),
            night=_slot("night", picks["night"]),
        ))

    return ItineraryResponse(
        title=info.title(),
        destination=destination,
        city_intro=(
            f"{destination}: we've put together a workable plan from real POI data. "
            "Keep chatting to tell me about pace, kids, rainy-day backups and so on, "
            "and I'll adjust it within real places."
        ),
        overview="Places come from map POI search results; check opening hours and booking rules before you go.",
        days=days,
        food_map=build_food_map(candidates, classifier),
        tips=[SOURCE_TIP, REPLACE_TIP],
    )


def build_synthetic_itinerary(info: PlanningInfo) -> ItineraryResponse:
    """Placeholder itinerary templated from the destination name only."""
    destination = _destination(info)

    def slot(name: str, item_name: str, category: str, tag: str) -> ItinerarySlot:
        hours, _ = _SLOT_DEFAULTS[name]
        return ItinerarySlot(
            title=SLOT_TITLES[name],
            items=[ItineraryItem(name=item_name, category=category,
                                 estimated_duration_hours=hours, tag=tag)],
        )

    days = [
        ItineraryDay(
            date=info.day_date(i, default_today=True),
            title=f"Day {i + 1}",
            morning=slot("morning", f"{destination} representative museum", "Museum", "Must go"),
            afternoon=slot("afternoon", f"{destination} landmark and old-town stroll", "Sight", "Classic"),
            night=slot("night", f"{destination} night view and food street", "Food", "Atmosphere"),
        )
        for i in range(info.days)
    ]

    return ItineraryResponse(
        title=info.title(),
        destination=destination,
        city_intro=(
            f"{destination}, a city worth slowing down for, with classic landmarks "
            "as well as the lanes and food locals love."
        ),
        overview="Mixes an in-depth city walk with nearby nature and culture; adjust to your interests and energy.",
        days=days,
        food_map=FoodMap(
            hotpot=[f"{destination} local hotpot or skewers (pick a popular long-running spot)"],
            local_cuisine=[f"{destination} home-style local restaurant (order the signature dishes)"],
            snacks=[f"{destination} street snacks (try a snack street or shopping district)"],
            streets=[f"{destination} popular food streets (examples, swap in local favourites)"],
            coffee_dessert=["Local coffee and dessert shops (examples)"],
        ),
        tips=[FALLBACK_TIP],
    )


def build_fallback(info: PlanningInfo, candidates: list[PoiCandidate],
                   classifier: CategoryClassifier = DEFAULT_CLASSIFIER) -> ItineraryResponse:
    """Best deterministic plan for the pool: POI-based, else synthetic."""
    if candidates:
        return build_poi_itinerary(info, candidates, classifier)
    return build_synthetic_itinerary(info)
