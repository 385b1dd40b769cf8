"""
litellm helpers shared by the itinerary planner and the guide.

Supports OpenAI, Gemini and Claude via LLM_PROVIDER / LLM_MODEL. Callers
treat any exception from _llm_call as "no model output" and degrade.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import litellm

logger = logging.getLogger(__name__)

# Silence litellm's own verbose logging
litellm.suppress_debug_info = True
# Drop params unsupported by the active model (e.g. response_format)
litellm.drop_params = True

_LLM_DEFAULTS = {
    "openai":    "gpt-4o-mini",
    "gemini":    "gemini-2.0-flash",
    "anthropic": "claude-sonnet-4-20250514",
}


def _llm_name() -> str:
    """Return the litellm model string (provider/model format)."""
    provider = os.getenv("LLM_PROVIDER", "openai").lower().strip()
    if provider not in _LLM_DEFAULTS:
        provider = "openai"
    model = os.getenv("LLM_MODEL", _LLM_DEFAULTS[provider])
    if provider == "openai":
        return model  # litellm uses bare model name for OpenAI
    return f"{provider}/{model}"


def _llm_api_key() -> str | None:
    return (os.getenv("AI_API_KEY") or os.getenv("OPENAI_API_KEY") or "").strip() or None


def _llm_configured() -> bool:
    """True when some credential for the active model is available."""
    if _llm_api_key():
        return True
    try:
        env = litellm.validate_environment(model=_llm_name())
    except Exception as exc:
        logger.debug("litellm environment check failed: %s", exc)
        return False
    return bool(env.get("keys_in_environment"))


def _llm_call(messages: list[dict], temperature: float = 0.3, json_mode: bool = True) -> str:
    """Make a single litellm.completion() call and return the text content."""
    kwargs: dict[str, Any] = {}
    api_key = _llm_api_key()
    if api_key:
        kwargs["api_key"] = api_key
    base_url = os.getenv("AI_BASE_URL", "").strip()
    if base_url:
        kwargs["api_base"] = base_url
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = litellm.completion(
        model=_llm_name(),
        messages=messages,
        temperature=temperature,
        **kwargs,
    )
    return response.choices[0].message.content or ""


def _safe_json_parse(text: str) -> Any:
    """Extract and parse JSON from an LLM response that may include markdown fences."""
    cleaned = text.strip()
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1].split("```", 1)[0]
    elif "```" in cleaned:
        cleaned = cleaned.split("```", 1)[1].split("```", 1)[0]
    return json.loads(cleaned.strip())


def bounded_history(messages: Any, limit: int) -> list[dict]:
    """Last ``limit`` user/assistant turns with non-empty string content."""
    if not isinstance(messages, list):
        return []
    turns = []
    for msg in messages:
        if not isinstance(msg, dict):
            continue
        role = msg.get("role")
        content = msg.get("content")
        if role in ("user", "assistant") and isinstance(content, str) and content.strip():
            turns.append({"role": role, "content": content})
    return turns[-limit:]
