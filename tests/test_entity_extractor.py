from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from appointment_intake import entity_extractor
from appointment_intake.entity_extractor import (
    GeminiEntityExtractor,
    StubEntityExtractor,
    get_entity_extractor,
    parse_entities_response,
)
from appointment_intake.event_models import RawEntities


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.text = text or json.dumps(payload)

    def json(self) -> Any:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


def _gemini_payload(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_parse_plain_json() -> None:
    entities = parse_entities_response(
        '{"date_phrase": "tomorrow", "time_phrase": "3pm", "department": "Dentist", '
        '"confidence": 0.92, "is_clear": true}'
    )

    assert entities == RawEntities("tomorrow", "3pm", "Dentist", 0.92, True)


def test_parse_json_inside_markdown_fence() -> None:
    content = '```json\n{"date_phrase": "next friday", "time_phrase": null, "department": "ENT", "confidence": 0.7}\n```'

    entities = parse_entities_response(content)

    assert entities.date_phrase == "next friday"
    assert entities.time_phrase is None
    assert entities.department == "ENT"


def test_fenced_json_wins_over_braces_in_trailing_prose() -> None:
    content = (
        "```json\n"
        '{"date_phrase": "today", "time_phrase": "9am", "department": "ENT", "confidence": 0.8}\n'
        "```\n"
        "Unknown fields would be {null}."
    )

    entities = parse_entities_response(content)

    assert entities == RawEntities("today", "9am", "ENT", 0.8, True)


def test_nan_confidence_literal_is_not_trusted() -> None:
    content = '{"date_phrase": "tomorrow", "time_phrase": "3pm", "department": "Dentist", "confidence": NaN, "is_clear": true}'

    entities = parse_entities_response(content)

    assert entities.confidence == entity_extractor.DEFAULT_CONFIDENCE


def test_parse_json_surrounded_by_prose() -> None:
    content = 'Sure! Here you go: {"date_phrase": "today", "confidence": 0.8, "is_clear": false} Hope it helps.'

    entities = parse_entities_response(content)

    assert entities.date_phrase == "today"
    assert entities.is_clear is False


@pytest.mark.parametrize(
    ("raw_confidence", "expected"),
    [("high", 0.5), (None, 0.5), (True, 0.5), (1.4, 1.0), (-2, 0.0), (0.65, 0.65), (float("nan"), 0.5), (float("inf"), 0.5)],
)
def test_confidence_is_coerced(raw_confidence, expected: float) -> None:
    entities = parse_entities_response(json.dumps({"confidence": raw_confidence}))

    assert entities.confidence == expected


def test_placeholder_and_non_string_values_become_none() -> None:
    entities = parse_entities_response(
        json.dumps({"date_phrase": "null", "time_phrase": 15, "department": "  ", "confidence": 0.9})
    )

    assert entities.date_phrase is None
    assert entities.time_phrase is None
    assert entities.department is None
    assert entities.is_clear is True


@pytest.mark.parametrize("content", ["", "I could not find an appointment.", "[1, 2, 3]", "{not json}"])
def test_parse_without_a_json_object_raises(content: str) -> None:
    with pytest.raises(ValueError):
        parse_entities_response(content)


def test_stub_extractor_returns_default_entities() -> None:
    entities = StubEntityExtractor().extract("anything")

    assert entities == RawEntities("tomorrow", "3pm", "Dentist", 0.92, True)


def test_stub_extractor_accepts_custom_response() -> None:
    extractor = StubEntityExtractor({"date_phrase": None, "time_phrase": "3pm", "confidence": 0.9})

    entities = extractor.extract("dentist at 3pm")

    assert entities.date_phrase is None
    assert entities.department is None


def test_gemini_extractor_posts_prompt_and_parses_reply(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {}

    def fake_post(url, params=None, json=None, timeout=None):
        calls.update(url=url, params=params, json=json, timeout=timeout)
        return FakeResponse(
            _gemini_payload(
                '{"date_phrase": "tomorrow", "time_phrase": "10:00", "department": "Cardiology", '
                '"confidence": 0.88, "is_clear": true}'
            )
        )

    monkeypatch.setattr(entity_extractor.requests, "post", fake_post)

    entities = GeminiEntityExtractor("secret", model="gemini-test").extract("heart doctor tmrw at 10")

    assert entities == RawEntities("tomorrow", "10:00", "Cardiology", 0.88, True)
    assert calls["url"].endswith("/models/gemini-test:generateContent")
    assert calls["params"] == {"key": "secret"}
    assert calls["timeout"] == entity_extractor.REQUEST_TIMEOUT_SECONDS
    prompt = calls["json"]["contents"][0]["parts"][0]["text"]
    assert 'Text to analyze: "heart doctor tmrw at 10"' in prompt


def test_gemini_http_error_becomes_failed_entities(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        entity_extractor.requests,
        "post",
        lambda *args, **kwargs: FakeResponse({"error": {"message": "quota"}}, status_code=429),
    )

    entities = GeminiEntityExtractor("secret").extract("dentist tomorrow")

    assert entities.confidence == 0.0
    assert entities.is_clear is False
    assert entities.missing_fields() == ["date", "time", "department"]
    assert "429" in entities.error


def test_gemini_connection_error_becomes_failed_entities(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("network down")

    monkeypatch.setattr(entity_extractor.requests, "post", boom)

    entities = GeminiEntityExtractor("secret").extract("dentist tomorrow")

    assert entities.error == "network down"
    assert entities.is_clear is False


@pytest.mark.parametrize("reply", [_gemini_payload("no json here"), {"candidates": []}, {}])
def test_gemini_unusable_reply_becomes_failed_entities(monkeypatch: pytest.MonkeyPatch, reply: dict) -> None:
    monkeypatch.setattr(entity_extractor.requests, "post", lambda *args, **kwargs: FakeResponse(reply))

    entities = GeminiEntityExtractor("secret").extract("dentist tomorrow")

    assert entities.confidence == 0.0
    assert entities.error


def test_factory_prefers_stub_without_api_key() -> None:
    assert isinstance(get_entity_extractor(), StubEntityExtractor)


def test_factory_uses_gemini_with_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "secret")

    extractor = get_entity_extractor()

    assert isinstance(extractor, GeminiEntityExtractor)
    assert extractor.model == "gemini-2.5-flash-lite"


def test_factory_stub_flag_wins_over_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("USE_STUB", "1")

    assert isinstance(get_entity_extractor(), StubEntityExtractor)
