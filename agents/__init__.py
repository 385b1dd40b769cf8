from .llm import _llm_name, _llm_configured
from .planning_agent import (
    ItineraryPlanner,
    RefinementInProgress,
    RefinementSession,
    RefinementSessions,
    RefinementState,
)
from .GeoAgent import GeoService
from .GuideAgent import GuideService
from .PoiAgent import PoiCollector, ProviderError, ProviderResult, collect_poi_candidates

__all__ = [
    "_llm_name",
    "_llm_configured",
    "ItineraryPlanner",
    "RefinementInProgress",
    "RefinementSession",
    "RefinementSessions",
    "RefinementState",
    "GeoService",
    "GuideService",
    "PoiCollector",
    "ProviderError",
    "ProviderResult",
    "collect_poi_candidates",
]
