"""
Event normalizer for converting RawEntities to NormalizedAppointment.
Handles date/time parsing in the target timezone and routes each request to
commit or clarification.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from dateutil import tz as dateutil_tz

from appointment_intake.clarification_gate import generate_clarification_message, needs_clarification
from appointment_intake.event_models import (
    Clarify,
    Commit,
    Decision,
    NormalizedAppointment,
    RawEntities,
)
from appointment_intake.logging_helper import Log
from appointment_intake.phrase_parser import parse_date_phrase, parse_time_phrase
from appointment_intake.timezone_composer import compose, resolve_timezone

AMBIGUOUS_MESSAGE = "Ambiguous date/time or department"
DEFAULT_DEPARTMENT = "General"

EntitiesInput = Union[RawEntities, Dict[str, Any]]


def _coerce_entities(entities: EntitiesInput) -> RawEntities:
    if isinstance(entities, RawEntities):
        return entities
    return RawEntities.from_dict(entities)


def normalize(
    entities: EntitiesInput,
    timezone: str,
    now: Optional[datetime] = None
) -> NormalizedAppointment:
    """
    Normalize extracted entities to calendar values in the given timezone.

    Phrases that do not parse leave the matching field as None; this never
    raises for well-formed entities.

    Args:
        entities: RawEntities (or an equivalent mapping) from the entity extractor
        timezone: IANA timezone the phrases are interpreted in
        now: Reference instant for relative dates, defaults to the current time

    Returns:
        NormalizedAppointment, possibly with None fields

    Raises:
        InvalidEntitiesError: if a mapping violates the RawEntities contract
        UnknownTimezoneError: if the timezone cannot be resolved
    """
    entities = _coerce_entities(entities)
    resolve_timezone(timezone)
    if now is None:
        now = datetime.now(dateutil_tz.UTC)

    Log.section("Event Normalizer")
    Log.info(f"Normalizing date='{entities.date_phrase}', time='{entities.time_phrase}' in {timezone}")

    parsed_date = parse_date_phrase(entities.date_phrase, timezone, now)
    parsed_time = parse_time_phrase(entities.time_phrase)
    instant = compose(parsed_date, parsed_time, timezone)

    if parsed_date is None and entities.date_phrase:
        Log.warn(f"Could not parse date phrase: '{entities.date_phrase}'")
    if parsed_time is None and entities.time_phrase:
        Log.warn(f"Could not parse time phrase: '{entities.time_phrase}'")

    normalized = NormalizedAppointment(
        date=parsed_date.as_text() if parsed_date else None,
        time=parsed_time.as_text() if parsed_time else None,
        datetime=instant,
        department=entities.department,
        timezone=timezone,
    )

    Log.kv({
        "stage": "normalize",
        "result": "success" if normalized.is_complete() else "partial",
        "date": normalized.date,
        "time": normalized.time,
        "datetime": normalized.datetime,
        "timezone": timezone,
    })
    return normalized


def decide(entities: EntitiesInput, normalized: NormalizedAppointment) -> Decision:
    """
    Route a request to Commit or Clarify.

    The gate runs on the raw entities first; a request that passes it but whose
    date or time did not parse gets the generic ambiguity message.
    """
    entities = _coerce_entities(entities)

    if needs_clarification(entities):
        message = generate_clarification_message(entities)
        Log.kv({
            "stage": "gate",
            "result": "clarify",
            "reason": "needs_clarification",
            "confidence": entities.confidence,
            "missing": ",".join(entities.missing_fields()) or "none",
        })
        return Clarify(message)

    if normalized.date is None or normalized.time is None:
        Log.kv({"stage": "gate", "result": "clarify", "reason": "unparsed_date_or_time"})
        return Clarify(AMBIGUOUS_MESSAGE)

    Log.kv({"stage": "gate", "result": "commit"})
    return Commit(normalized)


def process(
    entities: EntitiesInput,
    timezone: str,
    now: Optional[datetime] = None
) -> Tuple[NormalizedAppointment, Decision]:
    """Normalize the entities and route the request in one call."""
    entities = _coerce_entities(entities)
    normalized = normalize(entities, timezone, now)
    return normalized, decide(entities, normalized)


def resolve_department(normalized: NormalizedAppointment, entities: RawEntities) -> str:
    """Department for a committed record: normalized, then extracted, then "General"."""
    for candidate in (normalized.department, entities.department):
        if candidate is not None and candidate.strip():
            return candidate
    return DEFAULT_DEPARTMENT


def normalization_confidence(normalized: NormalizedAppointment) -> float:
    """
    Two-bucket placeholder kept for response compatibility.
    Not a calibrated confidence model.
    """
    return 0.95 if normalized.is_complete() else 0.5
