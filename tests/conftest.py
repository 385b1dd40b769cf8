import sys
import os
import pytest

# Project root - needed for PlanningInfo, edge_cache, main and the agents package
_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _root not in sys.path:
    sys.path.insert(0, _root)

from PlanningInfo import PlanningInfo
from edge_cache import MemoryStore, TTLCache
from agents.models import Coordinates, PoiCandidate


@pytest.fixture(autouse=True)
def no_provider_keys(monkeypatch):
    """Tests never reach a real provider unless they set a key themselves."""
    for var in ("AMAP_KEY", "AMAP_WEB_KEY", "AI_API_KEY", "OPENAI_API_KEY", "AI_BASE_URL",
                "LLM_PROVIDER", "LLM_MODEL", "CACHE_BACKEND"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def cache():
    return TTLCache(MemoryStore())


@pytest.fixture
def paris_info():
    return PlanningInfo(destination="Paris", days=1, preferences=["art"], start_date="2026-06-01")


@pytest.fixture
def chengdu_info():
    return PlanningInfo(destination="Chengdu", days=2, preferences=["history"])


@pytest.fixture
def paris_candidates():
    """One museum-like and one restaurant-like candidate."""
    return [
        PoiCandidate(
            poi_id="p1",
            name="Musée d'Orsay",
            category="museum",
            address="1 Rue de la Légion d'Honneur",
            location=Coordinates(lat=48.86, lng=2.3266),
        ),
        PoiCandidate(
            poi_id="p2",
            name="Le Bouillon Chartier",
            category="restaurant",
            address="7 Rue du Faubourg Montmartre",
            location=Coordinates(lat=48.8719, lng=2.3434),
        ),
    ]


@pytest.fixture
def chengdu_candidates():
    """AMap-style Chinese candidates covering all slot patterns."""
    return [
        PoiCandidate(poi_id="c1", name="四川博物院", category="科教文化服务;博物馆;博物馆",
                     address="浣花南路251号", location=Coordinates(lat=30.66, lng=104.03)),
        PoiCandidate(poi_id="c2", name="人民公园", category="风景名胜;公园广场;公园",
                     address="少城路12号", location=Coordinates(lat=30.66, lng=104.06)),
        PoiCandidate(poi_id="c3", name="蜀九香火锅", category="餐饮服务;中餐厅;火锅店",
                     address="玉林路", location=Coordinates(lat=30.63, lng=104.06)),
        PoiCandidate(poi_id="c4", name="成都博物馆", category="科教文化服务;博物馆;博物馆",
                     address="小河街1号", location=Coordinates(lat=30.66, lng=104.06)),
        PoiCandidate(poi_id="c5", name="宽窄巷子", category="风景名胜;风景名胜;街区",
                     address="长顺街", location=Coordinates(lat=30.67, lng=104.05)),
        PoiCandidate(poi_id="c6", name="锦里小吃街", category="餐饮服务;快餐厅;小吃",
                     address="武侯祠大街", location=Coordinates(lat=30.64, lng=104.05)),
        PoiCandidate(poi_id="c7", name="猫屎咖啡", category="餐饮服务;咖啡厅;咖啡厅",
                     address="春熙路", location=Coordinates(lat=30.65, lng=104.08)),
    ]
