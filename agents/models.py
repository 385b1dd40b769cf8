"""
Itinerary data model.

All values are built fresh per request and never mutated after construction
by the pipeline; refinement produces a new ItineraryResponse. Serialized with
camelCase keys, optional fields omitted when None.
"""

import json
from dataclasses import dataclass, field
from typing import Optional

from dataclasses_json import LetterCase, config, dataclass_json

SOURCE_AMAP = "amap"

SLOT_NAMES = ("morning", "afternoon", "night")
SLOT_TITLES = {"morning": "Morning", "afternoon": "Afternoon", "night": "Night"}
FOOD_BUCKETS = ("hotpot", "localCuisine", "snacks", "streets", "coffeeDessert")


def _optional():
    return field(default=None, metadata=config(exclude=lambda v: v is None))


@dataclass_json
@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass(frozen=True)
class PoiCandidate:
    poi_id: str
    name: str
    category: Optional[str] = _optional()
    address: Optional[str] = _optional()
    location: Optional[Coordinates] = _optional()
    source: str = SOURCE_AMAP


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass(frozen=True)
class ItineraryItem:
    name: str
    poi_id: Optional[str] = _optional()
    category: Optional[str] = _optional()
    estimated_duration_hours: Optional[float] = _optional()
    tag: Optional[str] = _optional()
    address: Optional[str] = _optional()
    location: Optional[Coordinates] = _optional()
    source: Optional[str] = _optional()

    @classmethod
    def from_candidate(cls, poi: PoiCandidate, *, hours: Optional[float] = None,
                       tag: Optional[str] = None) -> "ItineraryItem":
        return cls(
            name=poi.name,
            poi_id=poi.poi_id,
            category=poi.category,
            estimated_duration_hours=hours,
            tag=tag,
            address=poi.address,
            location=poi.location,
            source=SOURCE_AMAP,
        )


@dataclass_json
@dataclass(frozen=True)
class ItinerarySlot:
    title: str
    items: list[ItineraryItem] = field(default_factory=list)


@dataclass_json
@dataclass(frozen=True)
class ItineraryDay:
    date: str
    title: str
    morning: ItinerarySlot
    afternoon: ItinerarySlot
    night: ItinerarySlot

    def slots(self) -> list[ItinerarySlot]:
        return [self.morning, self.afternoon, self.night]

    def item_count(self) -> int:
        return sum(len(s.items) for s in self.slots())


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass(frozen=True)
class FoodMap:
    hotpot: list[str] = field(default_factory=list)
    local_cuisine: list[str] = field(default_factory=list)
    snacks: list[str] = field(default_factory=list)
    streets: list[str] = field(default_factory=list)
    coffee_dessert: list[str] = field(default_factory=list)


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass(frozen=True)
class ItineraryResponse:
    title: str
    destination: str
    city_intro: str
    days: list[ItineraryDay]
    food_map: FoodMap
    tips: list[str]
    overview: Optional[str] = _optional()

    def has_items(self) -> bool:
        return any(d.item_count() > 0 for d in self.days)

    def poi_ids(self) -> list[str]:
        return [
            it.poi_id
            for d in self.days
            for s in d.slots()
            for it in s.items
            if it.poi_id
        ]

    def to_json_str(self) -> str:
        """Canonical JSON text (stable key order), used for equality checks."""
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)


@dataclass_json
@dataclass(frozen=True)
class ChatResponse:
    reply: str
    itinerary: ItineraryResponse
    dropped_items: int = field(default=0, metadata=config(field_name="droppedItems"))
