"""
Unit tests for agents/fallback.py and agents/categories.py
"""
from PlanningInfo import PlanningInfo
from agents.categories import BASE_SEARCH_KEYWORDS_ZH, DEFAULT_CLASSIFIER, build_keywords
from agents.fallback import (
    FALLBACK_TIP,
    SOURCE_TIP,
    build_fallback,
    build_food_map,
    build_poi_itinerary,
    build_synthetic_itinerary,
)
from agents.models import PoiCandidate


def _slot_ids(day):
    return [[it.poi_id for it in s.items] for s in day.slots()]


# ---------------------------------------------------------------------------
# Category classifier
# ---------------------------------------------------------------------------

class TestCategoryClassifier:
    def test_chinese_categories(self, chengdu_candidates):
        by_id = {c.poi_id: c for c in chengdu_candidates}
        assert DEFAULT_CLASSIFIER.is_museum(by_id["c1"])
        assert DEFAULT_CLASSIFIER.is_walk(by_id["c2"])
        assert DEFAULT_CLASSIFIER.is_food(by_id["c3"])

    def test_english_names(self):
        assert DEFAULT_CLASSIFIER.is_museum(PoiCandidate(poi_id="x", name="British Museum"))
        assert DEFAULT_CLASSIFIER.is_walk(PoiCandidate(poi_id="x", name="Hyde Park"))
        assert DEFAULT_CLASSIFIER.is_food(PoiCandidate(poi_id="x", name="Café de Flore"))

    def test_bar_needs_word_boundary(self):
        assert not DEFAULT_CLASSIFIER.is_food(PoiCandidate(poi_id="x", name="Barcelona Pavilion"))
        assert DEFAULT_CLASSIFIER.is_food(PoiCandidate(poi_id="x", name="Harry's Bar"))


class TestBuildKeywords:
    def test_preferences_first_then_baseline(self):
        kws = build_keywords(["history", "博物馆", "history"])
        assert kws[:2] == ["history", "博物馆"]
        assert kws.count("博物馆") == 1
        assert len(kws) == 16

    def test_capped(self):
        kws = build_keywords([f"p{i}" for i in range(10)])
        assert len(kws) == 18
        assert kws[:10] == [f"p{i}" for i in range(10)]

    def test_baseline_only(self):
        assert build_keywords([]) == list(BASE_SEARCH_KEYWORDS_ZH)


# ---------------------------------------------------------------------------
# POI-based builder
# ---------------------------------------------------------------------------

class TestBuildPoiItinerary:
    def test_paris_museum_morning_restaurant_night(self, paris_info, paris_candidates):
        itin = build_poi_itinerary(paris_info, paris_candidates)
        assert len(itin.days) == 1
        assert _slot_ids(itin.days[0]) == [["p1"], [], ["p2"]]

    def test_slot_item_defaults(self, paris_info, paris_candidates):
        day = build_poi_itinerary(paris_info, paris_candidates).days[0]
        morning = day.morning.items[0]
        assert morning.estimated_duration_hours == 3
        assert morning.tag == "Must see"
        assert morning.source == "amap"
        assert morning.name == "Musée d'Orsay"
        assert morning.address == paris_candidates[0].address
        assert morning.location == paris_candidates[0].location
        assert day.night.items[0].estimated_duration_hours == 2
        assert day.night.items[0].tag == "Food"

    def test_pattern_matches_per_day(self, chengdu_candidates):
        info = PlanningInfo(destination="Chengdu", days=2)
        itin = build_poi_itinerary(info, chengdu_candidates)
        assert _slot_ids(itin.days[0]) == [["c1"], ["c2"], ["c3"]]
        assert _slot_ids(itin.days[1]) == [["c4"], ["c5"], ["c6"]]

    def test_exhausted_pool_leaves_slots_empty(self, chengdu_candidates):
        info = PlanningInfo(destination="Chengdu", days=3)
        day3 = build_poi_itinerary(info, chengdu_candidates).days[2]
        # only c7 (a cafe) is left
        assert _slot_ids(day3) == [[], [], ["c7"]]

    def test_vacant_slots_take_any_unused(self):
        pool = [
            PoiCandidate(poi_id="a", name="Hyde Park"),
            PoiCandidate(poi_id="b", name="Office Tower Block"),
            PoiCandidate(poi_id="c", name="Central Station"),
        ]
        day = build_poi_itinerary(PlanningInfo(destination="London"), pool).days[0]
        # no museum or food match: vacant slots are filled in slot order
        assert _slot_ids(day) == [["b"], ["a"], ["c"]]

    def test_never_reuses_a_candidate(self, chengdu_candidates):
        info = PlanningInfo(destination="Chengdu", days=5)
        ids = build_poi_itinerary(info, chengdu_candidates).poi_ids()
        assert len(ids) == len(set(ids)) == len(chengdu_candidates)

    def test_exact_day_count_and_dates(self, chengdu_candidates):
        info = PlanningInfo(destination="Chengdu", days=4, start_date="2026-05-01")
        itin = build_poi_itinerary(info, chengdu_candidates)
        assert [d.date for d in itin.days] == ["2026-05-01", "2026-05-02", "2026-05-03", "2026-05-04"]
        assert [d.title for d in itin.days] == ["Day 1", "Day 2", "Day 3", "Day 4"]

    def test_top_level_fields(self, paris_info, paris_candidates):
        itin = build_poi_itinerary(paris_info, paris_candidates)
        assert itin.title == "Paris 1-day trip"
        assert itin.city_intro
        assert SOURCE_TIP in itin.tips


class TestBuildFoodMap:
    def test_buckets(self, chengdu_candidates):
        food = build_food_map(chengdu_candidates)
        assert food.hotpot == ["蜀九香火锅"]
        assert food.snacks == ["锦里小吃街"]
        assert food.coffee_dessert == ["猫屎咖啡"]
        assert food.streets == ["宽窄巷子", "锦里小吃街"]

    def test_buckets_capped_at_six(self):
        pool = [PoiCandidate(poi_id=str(i), name=f"火锅{i}", category="餐饮服务") for i in range(10)]
        assert len(build_food_map(pool).hotpot) == 6

    def test_empty_pool(self):
        food = build_food_map([])
        assert food.to_dict() == {"hotpot": [], "localCuisine": [], "snacks": [], "streets": [], "coffeeDessert": []}


# ---------------------------------------------------------------------------
# Synthetic fallback
# ---------------------------------------------------------------------------

class TestBuildSyntheticItinerary:
    def test_chengdu_two_days(self, chengdu_info):
        itin = build_synthetic_itinerary(chengdu_info)
        assert len(itin.days) == 2
        assert itin.days[0].morning.items[0].name == "Chengdu representative museum"
        assert itin.days[0].afternoon.items[0].name == "Chengdu landmark and old-town stroll"
        assert itin.days[0].night.items[0].name == "Chengdu night view and food street"
        assert all(d.item_count() == 3 for d in itin.days)

    def test_never_empty_fields(self, chengdu_info):
        itin = build_synthetic_itinerary(chengdu_info)
        assert itin.city_intro
        assert itin.tips == [FALLBACK_TIP]
        assert itin.food_map.hotpot

    def test_placeholders_have_no_poi_id(self, chengdu_info):
        assert build_synthetic_itinerary(chengdu_info).poi_ids() == []

    def test_build_fallback_picks_tier(self, chengdu_info, chengdu_candidates):
        assert build_fallback(chengdu_info, []).poi_ids() == []
        assert build_fallback(chengdu_info, chengdu_candidates).poi_ids()
