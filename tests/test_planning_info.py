"""
Unit tests for PlanningInfo.py
"""
from datetime import date

import pytest

from PlanningInfo import PlanningInfo, normalize_days


class TestNormalizeDays:
    @pytest.mark.parametrize("raw,expected", [
        (3, 3),
        (2.9, 2),
        (0, 1),
        (-4, 1),
        (14, 14),
        (30, 14),
        ("5", 5),
    ])
    def test_floors_and_clamps(self, raw, expected):
        assert normalize_days(raw) == expected

    def test_garbage_is_one_day(self):
        assert normalize_days("abc") == 1
        assert normalize_days(None) == 1
        assert normalize_days(float("nan")) == 1
        assert normalize_days(float("inf")) == 1


class TestPlanningInfo:
    def test_post_init_normalizes_fields(self):
        info = PlanningInfo(destination="  Paris ", days=20, preferences=[" art ", "", "  "])
        assert info.destination == "Paris"
        assert info.days == 14
        assert info.preferences == ["art"]
        assert info.start_date is None

    def test_title(self):
        assert PlanningInfo(destination="Chengdu", days=2).title() == "Chengdu 2-day trip"
        assert PlanningInfo(destination="", days=1).title() == "Destination 1-day trip"

    def test_day_date_from_start(self):
        info = PlanningInfo(destination="Paris", days=3, start_date="2026-06-30")
        assert info.day_date(0) == "2026-06-30"
        assert info.day_date(1) == "2026-07-01"

    def test_day_date_without_start_is_empty(self):
        info = PlanningInfo(destination="Paris", days=2)
        assert info.day_date(0) == ""

    def test_day_date_default_today(self):
        info = PlanningInfo(destination="Paris", days=2)
        assert info.day_date(1, default_today=True) == date.fromordinal(date.today().toordinal() + 1).isoformat()

    def test_unparseable_start_date(self):
        info = PlanningInfo(destination="Paris", start_date="next tuesday")
        assert info.start() is None
        assert info.day_date(0) == ""

    def test_camel_case_round_trip(self):
        info = PlanningInfo.from_dict({"destination": "Paris", "days": 2, "startDate": "2026-06-01"})
        assert info.start_date == "2026-06-01"
        assert info.to_dict()["startDate"] == "2026-06-01"
