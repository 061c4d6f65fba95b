"""
Entity extractor interface for pulling appointment fields out of free text.
Supports StubEntityExtractor (offline) and GeminiEntityExtractor (real provider).
"""

import json
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from appointment_intake.event_models import RawEntities
from appointment_intake.logging_helper import Log
from appointment_intake import settings_manager

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_CONFIDENCE = 0.5

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_JSON_CODE_BLOCK = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")

PROMPT_TEMPLATE = """You are an intelligent appointment scheduling assistant. Extract structured data from natural language requests and correct any typos.

Extract these fields:
1. date_phrase: Any date mention (e.g., "tomorrow", "next Friday", "Jan 25")
2. time_phrase: Any time mention (e.g., "3pm", "10:00", "noon")
3. department: Medical department/service (correct typos, use Title Case)

Rules:
- Capture implied dates/times
- Mark "is_clear" as false if request is unrelated to appointments
- Provide confidence score (0.0 to 1.0)

Text to analyze: "{text}"

IMPORTANT: Respond with ONLY a valid JSON object, no markdown formatting, no explanations:
{{
  "date_phrase": "string or null",
  "time_phrase": "string or null",
  "department": "string or null",
  "confidence": 0.95,
  "is_clear": true
}}"""


def _clean_phrase(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    # Models sometimes echo the schema placeholder literally
    if not value or value.lower() == "null":
        return None
    return value


def _clean_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    # json.loads accepts NaN and Infinity literals
    if not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return min(max(float(value), 0.0), 1.0)


def parse_entities_response(content: str) -> RawEntities:
    """
    Parse a model response into RawEntities.

    Handles plain JSON, JSON surrounded by prose, and JSON inside a markdown
    code block.

    Raises:
        ValueError: if no JSON object can be found or decoded
    """
    content = (content or "").strip()

    block = _JSON_CODE_BLOCK.search(content)
    candidate = block.group(1) if block else None
    if candidate is None:
        match = _JSON_OBJECT.search(content)
        candidate = match.group(0) if match else None
    if candidate is None:
        raise ValueError("No JSON found in response")

    data = json.loads(candidate)
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")

    return RawEntities(
        date_phrase=_clean_phrase(data.get("date_phrase")),
        time_phrase=_clean_phrase(data.get("time_phrase")),
        department=_clean_phrase(data.get("department")),
        confidence=_clean_confidence(data.get("confidence")),
        is_clear=data.get("is_clear") is not False,
    )


class EntityExtractor(ABC):
    """Abstract base class for entity extractors."""

    @abstractmethod
    def extract(self, text: str) -> RawEntities:
        """
        Extract appointment entities from free text.

        Args:
            text: The request text

        Returns:
            RawEntities. Failures are reported as RawEntities.failed(...), never raised.
        """
        pass


class StubEntityExtractor(EntityExtractor):
    """
    Stub extractor for offline use and tests.
    Returns a fixed response, parsed exactly like a real model response.
    """

    DEFAULT_RESPONSE: Dict[str, Any] = {
        "date_phrase": "tomorrow",
        "time_phrase": "3pm",
        "department": "Dentist",
        "confidence": 0.92,
        "is_clear": True,
    }

    def __init__(self, response: Optional[Dict[str, Any]] = None):
        self.response = dict(response) if response is not None else dict(self.DEFAULT_RESPONSE)

    def extract(self, text: str) -> RawEntities:
        Log.section("Stub Entity Extractor")
        Log.info("Using stub entity extractor (offline mode)")

        entities = parse_entities_response(json.dumps(self.response))
        Log.kv({
            "stage": "llm",
            "provider": "stub",
            "result": "success",
            "date_phrase": entities.date_phrase,
            "time_phrase": entities.time_phrase,
            "department": entities.department,
            "confidence": entities.confidence,
        })
        return entities


class GeminiEntityExtractor(EntityExtractor):
    """
    Google Gemini client for real entity extraction.
    Uses the generateContent REST endpoint.
    """

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash-lite"):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key from environment
            model: Gemini model name
        """
        self.api_key = api_key
        self.model = model
        self.api_url = GEMINI_API_URL.format(model=model)

    def _request_content(self, text: str) -> str:
        payload = {
            "contents": [
                {"parts": [{"text": PROMPT_TEMPLATE.format(text=text)}]}
            ]
        }
        response = requests.post(
            self.api_url,
            params={"key": self.api_key},
            json=payload,
            timeout=REQUEST_TIMEOUT_SECONDS
        )

        Log.info(f"API response status: {response.status_code}")
        if response.status_code != 200:
            Log.error(f"Gemini API error: {response.text[:500]}")
        response.raise_for_status()

        result = response.json()
        candidates = result.get("candidates") or [{}]
        parts = candidates[0].get("content", {}).get("parts") or [{}]
        return parts[0].get("text", "")

    def extract(self, text: str) -> RawEntities:
        Log.section("Gemini Entity Extractor")
        Log.info(f"Using Gemini API ({self.model})")
        Log.kv({"stage": "llm", "provider": "gemini", "model": self.model, "status": "requesting"})

        try:
            content = self._request_content(text)
            Log.info(f"Raw Gemini response: {content[:500]}")
            if not content:
                raise ValueError("Empty response from Gemini")

            entities = parse_entities_response(content)

        except requests.exceptions.RequestException as e:
            Log.error(f"Gemini API request failed: {e}")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "api_error", "error": str(e)})
            return RawEntities.failed(str(e))

        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            Log.error(f"Could not parse Gemini response: {e}")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "parse_error", "error": str(e)})
            return RawEntities.failed(str(e))

        Log.kv({
            "stage": "llm",
            "provider": "gemini",
            "result": "success",
            "date_phrase": entities.date_phrase,
            "time_phrase": entities.time_phrase,
            "department": entities.department,
            "confidence": entities.confidence,
            "is_clear": entities.is_clear,
        })
        return entities


def get_entity_extractor() -> EntityExtractor:
    """
    Factory function to get the appropriate entity extractor.
    Uses GeminiEntityExtractor when GEMINI_API_KEY is set, otherwise the stub.
    USE_STUB forces the stub.
    """
    if settings_manager.use_stub():
        Log.info("USE_STUB flag set - using stub entity extractor")
        return StubEntityExtractor()

    api_key = settings_manager.get_api_key(settings_manager.GEMINI_API_KEY_ENV)
    if api_key:
        Log.info("Gemini API key found - using Gemini entity extractor")
        return GeminiEntityExtractor(api_key, model=settings_manager.get_model("entity_model"))

    Log.info("No Gemini API key - using stub entity extractor")
    return StubEntityExtractor()
