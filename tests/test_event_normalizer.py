from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pytest
from dateutil import tz as dateutil_tz

from appointment_intake.event_models import (
    Clarify,
    Commit,
    InvalidEntitiesError,
    NormalizedAppointment,
    RawEntities,
)
from appointment_intake.event_normalizer import (
    AMBIGUOUS_MESSAGE,
    decide,
    normalization_confidence,
    normalize,
    process,
    resolve_department,
)
from appointment_intake.timezone_composer import UnknownTimezoneError

KOLKATA = "Asia/Kolkata"


def test_end_to_end_commit(clear_entities: RawEntities, kolkata_now: datetime) -> None:
    normalized, decision = process(clear_entities, KOLKATA, kolkata_now)

    assert isinstance(decision, Commit)
    assert decision.normalized == normalized
    assert normalized.date == "2026-01-21"
    assert normalized.time == "15:00"
    assert normalized.datetime == "2026-01-21T09:30:00.000Z"
    assert normalized.department == "Dentist"
    assert normalized.timezone == KOLKATA


def test_unparseable_date_is_ambiguous(clear_entities: RawEntities, kolkata_now: datetime) -> None:
    entities = replace(clear_entities, date_phrase="sometime", confidence=0.9)

    normalized, decision = process(entities, KOLKATA, kolkata_now)

    assert normalized.date is None
    assert normalized.time == "15:00"
    assert normalized.datetime is None
    assert decision == Clarify(AMBIGUOUS_MESSAGE)


def test_unparseable_time_is_ambiguous(clear_entities: RawEntities, kolkata_now: datetime) -> None:
    entities = replace(clear_entities, time_phrase="after lunch")

    normalized, decision = process(entities, KOLKATA, kolkata_now)

    assert normalized.date == "2026-01-21"
    assert normalized.time is None
    assert decision == Clarify(AMBIGUOUS_MESSAGE)


def test_gate_runs_before_parse_check(clear_entities: RawEntities, kolkata_now: datetime) -> None:
    entities = replace(clear_entities, date_phrase=None)

    _, decision = process(entities, KOLKATA, kolkata_now)

    assert isinstance(decision, Clarify)
    assert decision.message.startswith("Please provide: Date")


def test_low_confidence_clarifies_even_when_everything_parses(
    clear_entities: RawEntities, kolkata_now: datetime
) -> None:
    entities = replace(clear_entities, confidence=0.4)

    normalized, decision = process(entities, KOLKATA, kolkata_now)

    assert normalized.is_complete()
    assert decision == Clarify("Please provide the appointment date, time, and department.")


def test_normalize_is_idempotent(clear_entities: RawEntities, kolkata_now: datetime) -> None:
    assert normalize(clear_entities, KOLKATA, kolkata_now) == normalize(clear_entities, KOLKATA, kolkata_now)


def test_same_entities_in_different_timezones(clear_entities: RawEntities) -> None:
    now = datetime(2026, 1, 20, 12, 0, tzinfo=dateutil_tz.UTC)

    kolkata = normalize(clear_entities, KOLKATA, now)
    london = normalize(clear_entities, "Europe/London", now)

    assert kolkata.date == london.date == "2026-01-21"
    assert kolkata.datetime == "2026-01-21T09:30:00.000Z"
    assert london.datetime == "2026-01-21T15:00:00.000Z"


def test_department_passes_through_verbatim(kolkata_now: datetime) -> None:
    entities = RawEntities(
        date_phrase="today",
        time_phrase="10:00",
        department=None,
        confidence=0.9,
        is_clear=True,
    )

    normalized = normalize(entities, KOLKATA, kolkata_now)

    assert normalized.department is None


def test_dst_gap_keeps_date_and_time_but_drops_instant() -> None:
    entities = RawEntities(
        date_phrase="2026-03-08",
        time_phrase="2:30am",
        department="Cardiology",
        confidence=0.95,
        is_clear=True,
    )
    now = datetime(2026, 3, 1, tzinfo=dateutil_tz.UTC)

    normalized, decision = process(entities, "America/New_York", now)

    assert normalized.date == "2026-03-08"
    assert normalized.time == "02:30"
    assert normalized.datetime is None
    # Date and time both parsed, so the request still commits
    assert isinstance(decision, Commit)


@pytest.mark.parametrize(
    ("date_phrase", "time_phrase"),
    [
        ("!!!", "???"),
        ("0001-01-01", "00:00"),
        ("9999-12-31", "23:59"),
        ("next", "99:99"),
        ("☃", "½ pm"),
    ],
)
def test_normalize_never_raises_for_odd_phrases(kolkata_now: datetime, date_phrase: str, time_phrase: str) -> None:
    entities = RawEntities(date_phrase, time_phrase, "Dentist", 0.9, True)

    normalized = normalize(entities, KOLKATA, kolkata_now)

    assert isinstance(normalized, NormalizedAppointment)
    if normalized.datetime is not None:
        assert normalized.date is not None and normalized.time is not None


def test_normalize_defaults_to_the_current_time(clear_entities: RawEntities) -> None:
    normalized = normalize(clear_entities, "UTC")

    assert normalized.date is not None
    assert normalized.datetime is not None


def test_mapping_input_is_validated(kolkata_now: datetime) -> None:
    with pytest.raises(InvalidEntitiesError):
        normalize({"date_phrase": "today", "time_phrase": "3pm", "department": "ENT"}, KOLKATA, kolkata_now)

    normalized = normalize(
        {"date_phrase": "today", "time_phrase": "3pm", "department": "ENT", "confidence": 0.8},
        KOLKATA,
        kolkata_now,
    )
    assert normalized.date == "2026-01-20"


def test_unknown_timezone_fails_fast(clear_entities: RawEntities, kolkata_now: datetime) -> None:
    with pytest.raises(UnknownTimezoneError):
        normalize(clear_entities, "Nowhere/Special", kolkata_now)


def test_decide_accepts_mappings(kolkata_now: datetime) -> None:
    payload = {"date_phrase": "today", "time_phrase": "3pm", "department": "ENT", "confidence": 0.3}
    normalized = normalize(payload, KOLKATA, kolkata_now)

    assert isinstance(decide(payload, normalized), Clarify)


@pytest.mark.parametrize(
    ("normalized_department", "entities_department", "expected"),
    [
        ("Cardiology", "cardio", "Cardiology"),
        (None, "Dentist", "Dentist"),
        ("  ", "Dentist", "Dentist"),
        (None, None, "General"),
        ("", "", "General"),
    ],
)
def test_resolve_department_fallback(normalized_department, entities_department, expected: str) -> None:
    normalized = NormalizedAppointment("2026-01-21", "15:00", None, normalized_department, KOLKATA)
    entities = RawEntities("tomorrow", "3pm", entities_department, 0.9, True)

    assert resolve_department(normalized, entities) == expected


def test_normalization_confidence_buckets() -> None:
    complete = NormalizedAppointment("2026-01-21", "15:00", "2026-01-21T09:30:00.000Z", "ENT", KOLKATA)
    partial = NormalizedAppointment(None, "15:00", None, "ENT", KOLKATA)

    assert normalization_confidence(complete) == 0.95
    assert normalization_confidence(partial) == 0.5
