"""
Itinerary planner (litellm, grounded in real POIs)

Two entry points, each a single LLM round-trip at most:

  1. generate  -> collect candidates, synthesize with the model, repair
  2. refine    -> recollect candidates, apply a chat instruction, repair

Degradation chain, decided here and logged at every step:

  model output  ->  POI-based deterministic plan  ->  synthetic placeholders

Whatever the model returns is repaired against the candidate pool, so every
item the caller sees references a real candidate.
"""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import threading
from typing import Any, Optional

from PlanningInfo import PlanningInfo

from .categories import DEFAULT_CLASSIFIER, CategoryClassifier
from .fallback import build_fallback, build_poi_itinerary, build_synthetic_itinerary
from .llm import _llm_call, _llm_configured, _safe_json_parse, bounded_history
from .models import ChatResponse, ItineraryResponse, PoiCandidate
from .PoiAgent import PoiCollector
from .repair import RepairResult, repair_itinerary

logger = logging.getLogger(__name__)

PROMPT_CANDIDATE_LIMIT = 60
PROMPT_PREFERENCE_LIMIT = 8
CHAT_HISTORY_TURNS = 10

GENERATE_TEMPERATURE = 0.3
CHAT_TEMPERATURE = 0.4

REPLY_DEFAULT = "Adjusted the itinerary as requested."
REPLY_NO_MODEL = (
    "The AI model isn't configured right now, so I've refreshed your plan "
    "against real nearby places instead of applying the change."
)
REPLY_MODEL_FAILED = (
    "I couldn't reach the AI model just now, so here is a basic plan built "
    "from real places. Try your request again in a moment."
)
REPLY_UNPARSEABLE = (
    "I couldn't make sense of that change, so here is a basic plan built "
    "from real places. Try rephrasing your request."
)

_ITEM_SCHEMA = {
    "poiId": "string (must be one of candidates[].poiId)",
    "name": "string",
    "category": "string",
    "estimatedDurationHours": "number",
    "tag": "string",
}

_ITINERARY_SCHEMA = {
    "title": "string",
    "destination": "string",
    "cityIntro": "string (non-empty)",
    "overview": "string",
    "days": [{
        "date": "YYYY-MM-DD or empty string",
        "title": "string",
        "morning": {"title": "Morning", "items": [_ITEM_SCHEMA]},
        "afternoon": {"title": "Afternoon", "items": [_ITEM_SCHEMA]},
        "night": {"title": "Night", "items": [_ITEM_SCHEMA]},
    }],
    "foodMap": {
        "hotpot": ["string"],
        "localCuisine": ["string"],
        "snacks": ["string"],
        "streets": ["string"],
        "coffeeDessert": ["string"],
    },
    "tips": ["string (non-empty list)"],
}

_CONSTRAINTS = {"must_use_candidate_poiId": True, "max_items_per_slot": 2}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_GENERATE_SYSTEM = """\
You are a museum and city travel planner. Respond with strict JSON only, no \
markdown. No superhuman days: at most 3 major stops per day, split across \
three fixed slots (morning, afternoon, night) with 1-2 items each. cityIntro, \
foodMap and tips are mandatory and must not be empty. Use an empty string for \
date when no start date is given. Every item MUST carry a poiId taken from the \
supplied candidates; never invent a place that is not in the candidate list."""

_CHAT_SYSTEM = """\
You are a museum and city travel planner editing an existing itinerary. \
Apply the user's request and return the complete updated itinerary, not a \
diff. Keep unchanged days as they are. Respond with strict JSON only: \
{"reply": "1-3 sentences describing what changed", "itinerary": {...}}. \
Every item MUST carry a poiId taken from the supplied candidates; never \
invent a place that is not in the candidate list. At most 2 items per slot."""


def _candidate_payload(candidates: list[PoiCandidate]) -> list[dict]:
    return [c.to_dict() for c in candidates[:PROMPT_CANDIDATE_LIMIT]]


def _generate_prompt(info: PlanningInfo, candidates: list[PoiCandidate]) -> str:
    return json.dumps({
        "destination": info.destination,
        "startDate": info.start_date or "",
        "days": info.days,
        "preferences": info.preferences[:PROMPT_PREFERENCE_LIMIT],
        "schema": _ITINERARY_SCHEMA,
        "candidates": _candidate_payload(candidates),
        "constraints": _CONSTRAINTS,
    }, ensure_ascii=False)


def _chat_prompt(info: PlanningInfo, itinerary: Any, candidates: list[PoiCandidate],
                 message: str) -> str:
    return json.dumps({
        "destination": info.destination,
        "startDate": info.start_date or "",
        "days": info.days,
        "preferences": info.preferences[:PROMPT_PREFERENCE_LIMIT],
        "currentItinerary": itinerary,
        "candidates": _candidate_payload(candidates),
        "constraints": _CONSTRAINTS,
        "userMessage": message,
    }, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

class ItineraryPlanner:
    """Grounded itinerary generation and chat refinement."""

    def __init__(self, collector: Optional[PoiCollector] = None,
                 classifier: Optional[CategoryClassifier] = None, cache=None):
        self.classifier = classifier or DEFAULT_CLASSIFIER
        self.collector = collector or PoiCollector(cache=cache, classifier=self.classifier)

    def collect_candidates(self, info: PlanningInfo) -> list[PoiCandidate]:
        result = self.collector.collect(info.destination, info.preferences)
        if not result.ok:
            logger.warning("POI collection for %r failed (%s): %s; using fallback tier",
                           info.destination, result.error.kind, result.error)
            return []
        return result.value or []

    def _synthesize(self, info: PlanningInfo, candidates: list[PoiCandidate]) -> Optional[dict]:
        if not _llm_configured():
            logger.info("No LLM configured, using deterministic plan for %r", info.destination)
            return None
        try:
            raw = _llm_call(
                [
                    {"role": "system", "content": _GENERATE_SYSTEM},
                    {"role": "user", "content": _generate_prompt(info, candidates)},
                ],
                temperature=GENERATE_TEMPERATURE,
            )
            parsed = _safe_json_parse(raw)
        except Exception as exc:
            logger.warning("Itinerary LLM call failed: %s", exc)
            return None
        if not isinstance(parsed, dict):
            logger.warning("Itinerary LLM returned %s, expected an object", type(parsed).__name__)
            return None
        return parsed

    def generate(self, info: PlanningInfo) -> RepairResult:
        """Always returns a usable itinerary; never raises for provider failures."""
        candidates = self.collect_candidates(info)
        if not candidates:
            logger.warning("No POI candidates for %r, using synthetic plan", info.destination)
            return RepairResult(itinerary=build_synthetic_itinerary(info), used_fallback=True)

        fallback = build_poi_itinerary(info, candidates, self.classifier)
        raw = self._synthesize(info, candidates)
        if raw is None:
            result = repair_itinerary(fallback, info, candidates, fallback)
            return dataclasses.replace(result, used_fallback=True)
        return repair_itinerary(raw, info, candidates, fallback)

    def refine(self, info: PlanningInfo, itinerary: Any, messages: Any, message: str) -> ChatResponse:
        """Apply one chat instruction and return a complete replacement itinerary.

        Without a current itinerary the fallback plan is refined instead.
        """
        candidates = self.collect_candidates(info)
        fallback = build_fallback(info, candidates, self.classifier)
        if not itinerary:
            itinerary = fallback
        if isinstance(itinerary, ItineraryResponse):
            itinerary = itinerary.to_dict()

        if not _llm_configured():
            logger.info("No LLM configured, repairing current itinerary for %r", info.destination)
            result = repair_itinerary(itinerary, info, candidates, fallback)
            return ChatResponse(reply=REPLY_NO_MODEL, itinerary=result.itinerary,
                                dropped_items=result.dropped_items)

        history = bounded_history(messages, CHAT_HISTORY_TURNS)
        try:
            raw = _llm_call(
                [
                    {"role": "system", "content": _CHAT_SYSTEM},
                    *history,
                    {"role": "user", "content": _chat_prompt(info, itinerary, candidates, message)},
                ],
                temperature=CHAT_TEMPERATURE,
            )
        except Exception as exc:
            logger.warning("Chat LLM call failed: %s", exc)
            return ChatResponse(reply=REPLY_MODEL_FAILED, itinerary=fallback)

        try:
            parsed = _safe_json_parse(raw)
        except ValueError as exc:
            logger.warning("Chat LLM reply was not JSON: %s", exc)
            parsed = None
        if not isinstance(parsed, dict):
            return ChatResponse(reply=REPLY_UNPARSEABLE, itinerary=fallback)

        reply = parsed.get("reply")
        reply = reply.strip() if isinstance(reply, str) and reply.strip() else REPLY_DEFAULT
        new_itinerary = parsed.get("itinerary")
        if not isinstance(new_itinerary, dict):
            new_itinerary = itinerary

        result = repair_itinerary(new_itinerary, info, candidates, fallback)
        return ChatResponse(reply=reply, itinerary=result.itinerary,
                            dropped_items=result.dropped_items)


# ---------------------------------------------------------------------------
# Refinement sessions
# ---------------------------------------------------------------------------

class RefinementInProgress(Exception):
    """A refinement is already being applied on this session."""


class RefinementState(enum.Enum):
    IDLE = "idle"
    APPLYING = "applying"


class RefinementSession:
    """Idle -> Applying -> Idle. One refinement in flight at a time."""

    def __init__(self, planner: ItineraryPlanner):
        self.planner = planner
        self.state = RefinementState.IDLE
        self._lock = threading.Lock()

    def begin(self) -> None:
        """Move to APPLYING or raise RefinementInProgress."""
        with self._lock:
            if self.state is RefinementState.APPLYING:
                raise RefinementInProgress("a refinement is already in progress")
            self.state = RefinementState.APPLYING

    def finish(self) -> None:
        with self._lock:
            self.state = RefinementState.IDLE

    def run(self, info: PlanningInfo, itinerary: Any, messages: Any, message: str) -> ChatResponse:
        """Refine on a session already moved to APPLYING, then return to IDLE."""
        try:
            return self.planner.refine(info, itinerary, messages, message)
        finally:
            self.finish()

    def apply(self, info: PlanningInfo, itinerary: Any, messages: Any, message: str) -> ChatResponse:
        self.begin()
        return self.run(info, itinerary, messages, message)


class RefinementSessions:
    """Sessions keyed by client session id. Requests without an id get a fresh session.

    Sessions are claimed under the registry lock, so pruning never drops a
    session that a request is about to apply on.
    """

    MAX_IDLE_SESSIONS = 256

    def __init__(self, planner: ItineraryPlanner):
        self.planner = planner
        self._sessions: dict[str, RefinementSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: Optional[str]) -> RefinementSession:
        if not session_id:
            return RefinementSession(self.planner)
        with self._lock:
            return self._lookup(session_id)

    def _lookup(self, session_id: str) -> RefinementSession:
        if session_id not in self._sessions and len(self._sessions) >= self.MAX_IDLE_SESSIONS:
            self._sessions = {
                k: s for k, s in self._sessions.items()
                if s.state is RefinementState.APPLYING
            }
        session = self._sessions.get(session_id)
        if session is None:
            session = RefinementSession(self.planner)
            self._sessions[session_id] = session
        return session

    def apply(self, session_id: Optional[str], info: PlanningInfo, itinerary: Any,
              messages: Any, message: str) -> ChatResponse:
        """Claim the session for ``session_id`` and apply one refinement on it."""
        if not session_id:
            return RefinementSession(self.planner).apply(info, itinerary, messages, message)
        with self._lock:
            session = self._lookup(session_id)
            session.begin()
        return session.run(info, itinerary, messages, message)

    def __len__(self) -> int:
        return len(self._sessions)
