"""FastAPI Backend - Museum Guide (itinerary, geo, guide)"""
import os
import logging

# Load .env before anything else
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from PlanningInfo import PlanningInfo
from edge_cache import build_cache_from_env, cache_backend_name
from agents import (
    GeoService,
    GuideService,
    ItineraryPlanner,
    RefinementInProgress,
    RefinementSessions,
    _llm_configured,
    _llm_name,
)
from agents.PoiAgent import AmapClient

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Shared across requests; only the TTL cache holds cross-request state
cache = build_cache_from_env()
planner = ItineraryPlanner(cache=cache)
sessions = RefinementSessions(planner)
geo_service = GeoService(cache=cache)
guide_service = GuideService(cache=cache)

# FastAPI app
app = FastAPI(
    title="Museum Guide API",
    description="Grounded itinerary planning, geo lookups and a location-aware tour guide",
    version=VERSION,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models
class ItineraryRequest(BaseModel):
    destination: str = ""
    days: Any = 1
    preferences: List[Any] = []
    start_date: Optional[str] = Field(None, alias="startDate")

    class Config:
        populate_by_name = True

    def planning_info(self) -> PlanningInfo:
        destination = (self.destination or "").strip()
        if not destination:
            raise HTTPException(status_code=400, detail="destination is required")
        return PlanningInfo(
            destination=destination,
            days=self.days if self.days is not None else 1,
            preferences=[str(p) for p in self.preferences or []],
            start_date=self.start_date,
        )


class ChatRequest(ItineraryRequest):
    itinerary: Optional[Dict[str, Any]] = None
    messages: List[Any] = []
    message: str = ""
    session_id: Optional[str] = Field(None, alias="sessionId")


class ModeRequest(ChatRequest):
    mode: str = "generate"


class GeoViewbox(BaseModel):
    west: float
    south: float
    east: float
    north: float


class GeoRequest(BaseModel):
    action: str
    lat: Optional[Any] = None
    lng: Optional[Any] = None
    limit: Optional[Any] = None
    q: str = ""
    accept_language: Optional[str] = Field(None, alias="acceptLanguage")
    viewbox: Optional[GeoViewbox] = None
    bounded: bool = False

    class Config:
        populate_by_name = True


class GuideLocation(BaseModel):
    lat: Optional[Any] = None
    lng: Optional[Any] = None
    accuracy: Optional[float] = None


class GuideRequest(BaseModel):
    message: str = ""
    history: List[Any] = []
    persona: str = "expert"
    location: Optional[GuideLocation] = None
    client_time: Optional[str] = Field(None, alias="clientTime")
    locale: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


# Helper functions
def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip") or ""
    return forwarded.split(",")[0].strip() or None


def _generate(body: ItineraryRequest, response: Response) -> dict:
    info = body.planning_info()
    result = planner.generate(info)
    response.headers["X-Dropped-Items"] = str(result.dropped_items)
    return result.itinerary.to_dict()


def _chat(body: ChatRequest, response: Response) -> dict:
    info = body.planning_info()
    try:
        result = sessions.apply(body.session_id, info, body.itinerary, body.messages, body.message.strip())
    except RefinementInProgress:
        raise HTTPException(status_code=409, detail="A refinement is already in progress")
    response.headers["X-Dropped-Items"] = str(result.dropped_items)
    return result.to_dict()


# ============ ITINERARY ============

@app.post("/itinerary")
def itinerary(body: ModeRequest, response: Response):
    """Single entry point used by the mobile client (`mode` = generate | chat)."""
    if body.mode == "chat":
        return _chat(body, response)
    return _generate(body, response)


@app.post("/itinerary/generate")
def generate_itinerary(body: ItineraryRequest, response: Response):
    return _generate(body, response)


@app.post("/itinerary/chat")
def chat_itinerary(body: ChatRequest, response: Response):
    """Refine an itinerary with a chat message; returns {reply, itinerary, droppedItems}."""
    return _chat(body, response)


# ============ GEO ============

@app.post("/geo")
def geo(body: GeoRequest, request: Request):
    if body.action == "ip_locate":
        return geo_service.ip_locate(_client_ip(request))

    if body.action == "search_nearby_museums":
        try:
            return geo_service.search_nearby_museums(body.lat, body.lng, body.limit or 20)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    if body.action == "search_places":
        viewbox = body.viewbox.model_dump() if body.viewbox else None
        return geo_service.search_places(
            body.q, body.limit or 10, body.accept_language, viewbox, body.bounded,
        )

    raise HTTPException(status_code=400, detail="unknown action")


# ============ GUIDE ============

@app.post("/guide")
def guide(body: GuideRequest):
    try:
        return guide_service.answer(
            body.message,
            persona=body.persona,
            location=body.location.model_dump() if body.location else None,
            history=body.history,
            client_time=body.client_time,
            locale=body.locale,
            context=body.context,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# Health check
@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "version": VERSION,
        "llm": _llm_name(),
        "llm_configured": _llm_configured(),
        "llm_provider": os.getenv("LLM_PROVIDER", "openai"),
        "poi_provider_configured": AmapClient().configured,
        "cache_backend": cache_backend_name(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
