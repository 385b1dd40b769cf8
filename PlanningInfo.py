import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from dataclasses_json import LetterCase, dataclass_json

MIN_DAYS = 1
MAX_DAYS = 14


def normalize_days(days) -> int:
    """Floor and clamp a requested day count into 1..14."""
    try:
        value = float(days)
    except (TypeError, ValueError):
        return MIN_DAYS
    if not math.isfinite(value) or value < MIN_DAYS:
        return MIN_DAYS
    return max(MIN_DAYS, min(MAX_DAYS, int(value)))


@dataclass_json(letter_case=LetterCase.CAMEL)
@dataclass
class PlanningInfo:
    destination: str
    days: int = 1
    preferences: list[str] = field(default_factory=list)
    start_date: Optional[str] = None

    def __post_init__(self):
        self.destination = (self.destination or "").strip()
        self.days = normalize_days(self.days)
        self.preferences = [str(p).strip() for p in (self.preferences or []) if str(p).strip()]
        self.start_date = str(self.start_date).strip() if self.start_date else None

    def title(self) -> str:
        """Default itinerary title, e.g. 'Paris 3-day trip'."""
        return f"{self.destination or 'Destination'} {self.days}-day trip"

    def start(self) -> Optional[date]:
        """Parsed start date, or None when absent or unparseable."""
        if not self.start_date:
            return None
        try:
            return datetime.strptime(self.start_date[:10], "%Y-%m-%d").date()
        except ValueError:
            return None

    def day_date(self, index: int, default_today: bool = False) -> str:
        """ISO date for day ``index`` (0-based).

        Without a start date this is '' unless ``default_today`` is set, in
        which case the trip is assumed to start today.
        """
        start = self.start()
        if start is None:
            if not default_today:
                return ""
            start = date.today()
        return (start + timedelta(days=index)).isoformat()
