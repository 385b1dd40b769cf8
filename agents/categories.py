"""
Category classification for POI candidates.

The deterministic itinerary builder and the food map rely on name/category
substring patterns. The POI provider (AMap) returns Chinese names and type
strings, so the default profile matches Chinese category terms; English
terms are matched as well so non-Chinese candidate pools still classify.
A different profile can be injected into the planner.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Pattern

from .models import PoiCandidate


def _rx(*terms: str) -> Pattern[str]:
    return re.compile("|".join(terms), re.IGNORECASE)


@dataclass(frozen=True)
class CategoryClassifier:
    # Slot preferences: (name pattern, category pattern)
    museum: tuple[Pattern[str], Pattern[str]]
    walk: tuple[Pattern[str], Pattern[str]]
    food: tuple[Pattern[str], Pattern[str]]
    # Food-map buckets, matched against names only
    hotpot: Pattern[str]
    local_cuisine: Pattern[str]
    snacks: Pattern[str]
    streets: Pattern[str]
    coffee_dessert: Pattern[str]
    # Baseline keywords sent to the place-search provider
    search_keywords: tuple[str, ...] = field(default_factory=tuple)

    @staticmethod
    def _matches(pair: tuple[Pattern[str], Pattern[str]], poi: PoiCandidate) -> bool:
        name_rx, category_rx = pair
        return bool(name_rx.search(poi.name) or category_rx.search(poi.category or ""))

    def is_museum(self, poi: PoiCandidate) -> bool:
        return self._matches(self.museum, poi)

    def is_walk(self, poi: PoiCandidate) -> bool:
        return self._matches(self.walk, poi)

    def is_food(self, poi: PoiCandidate) -> bool:
        return self._matches(self.food, poi)


_MUSEUM_ZH = ("博物馆", "美术馆", "展览馆", "纪念馆")
_MUSEUM_EN = ("museum", "gallery", "exhibition", "memorial")

_WALK_NAME_ZH = ("公园", "步行街", "街区", "古城", "景区", "寺", "塔", "遗址", "古迹")
_WALK_CAT_ZH = ("公园", "风景", "旅游", "寺庙")
_WALK_EN = ("park", "garden", "promenade", "old town", "historic", "heritage",
            "temple", "church", "cathedral", "tower", "ruins", "square", "scenic")

_FOOD_NAME_ZH = ("火锅", "串串", "小吃", "夜市", "美食", "咖啡", "甜品", "酒吧")
_FOOD_CAT_ZH = ("餐饮服务",)
_FOOD_EN = ("restaurant", "food", "cafe", "café", "coffee", "bistro", "brasserie",
            r"\bbar\b", r"\bpub\b", "dessert", "bakery", "snack", "night market", "hotpot", "hot pot")

BASE_SEARCH_KEYWORDS_ZH = (
    "博物馆", "美术馆", "展览馆", "纪念馆", "历史文化街区", "步行街", "公园", "古迹",
    "寺", "夜市", "小吃街", "美食街", "火锅", "咖啡", "甜品",
)

DEFAULT_CLASSIFIER = CategoryClassifier(
    museum=(_rx(*_MUSEUM_ZH, *_MUSEUM_EN), _rx(*_MUSEUM_ZH, *_MUSEUM_EN)),
    walk=(_rx(*_WALK_NAME_ZH, *_WALK_EN), _rx(*_WALK_CAT_ZH, *_WALK_EN)),
    food=(_rx(*_FOOD_NAME_ZH, *_FOOD_EN), _rx(*_FOOD_CAT_ZH, *_FOOD_EN)),
    hotpot=_rx("火锅", "串串", "hotpot", "hot pot", "skewer"),
    local_cuisine=_rx("餐厅", "饭店", "酒家", "私房菜", "本帮", "restaurant", "bistro", "brasserie", "kitchen"),
    snacks=_rx("小吃", "夜市", "snack", "street food", "night market"),
    streets=_rx("街", "巷", "里", "夜市", r"\bstreet\b", r"\blane\b", r"\balley\b", r"\brue\b", r"\bmarket\b"),
    coffee_dessert=_rx("咖啡", "甜品", "面包", "蛋糕", "coffee", "cafe", "café", "dessert", "bakery", "patisserie"),
    search_keywords=BASE_SEARCH_KEYWORDS_ZH,
)


def build_keywords(preferences: list[str], classifier: Optional[CategoryClassifier] = None,
                   limit: int = 18) -> list[str]:
    """Preferences first, then baseline keywords; de-duplicated, capped."""
    classifier = classifier or DEFAULT_CLASSIFIER
    seen: set[str] = set()
    out: list[str] = []
    for kw in [*(str(p).strip() for p in preferences or []), *classifier.search_keywords]:
        if not kw or kw in seen:
            continue
        seen.add(kw)
        out.append(kw)
    return out[:limit]
